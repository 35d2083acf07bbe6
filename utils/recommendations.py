"""
Lesson suggestions

Next-lesson (adaptive) and spaced-review selection are pure functions over
rows already loaded by the router. Course recommendations rerank candidate
courses with an LLM.
"""

import json
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ValidationError

from config import settings
from models import Course
from schemas.api_models import SuggestionMode
from utils.error_handling import UpstreamServiceError
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("recommendations")


# ===============================================================================
# Configuration Constants
# ===============================================================================

REVIEW_INTERVALS = (1, 3, 7, 14, 30)
RECENT_ATTEMPTS_WINDOW = 5
MAX_CANDIDATE_COURSES = 20
MAX_RECOMMENDATIONS = 6
SECONDS_PER_DAY = 86400


# ===============================================================================
# Adaptive Suggestion
# ===============================================================================


def suggestion_mode(recent_scores: Sequence[float], threshold: float) -> SuggestionMode:
    """Review when any recent score is below the threshold, otherwise challenge"""
    if any(score < threshold for score in recent_scores):
        return SuggestionMode.REVIEW
    return SuggestionMode.CHALLENGE


def next_lesson_suggestion(
    ordered_lessons: Iterable,
    completed_lesson_ids: set,
    recent_scores: Sequence[float],
    threshold: float,
) -> Optional[Dict[str, Any]]:
    """
    First lesson in course order without a completed progress row.

    Args:
        ordered_lessons: lessons sorted by module order, then lesson order
        completed_lesson_ids: ids of lessons the learner has completed
        recent_scores: scores of the most recent quiz attempts, newest first
        threshold: scores below this put the suggestion in review mode

    Returns:
        ``{lessonId, title, mode}`` or None when every lesson is completed
    """
    for lesson in ordered_lessons:
        if lesson.id not in completed_lesson_ids:
            return {
                "lessonId": lesson.id,
                "title": lesson.title,
                "mode": suggestion_mode(recent_scores, threshold).value,
            }
    return None


# ===============================================================================
# Spaced Review
# ===============================================================================


def days_since(last_accessed_at: datetime, now: datetime) -> int:
    """Whole days elapsed, floored"""
    return int((now - last_accessed_at).total_seconds() // SECONDS_PER_DAY)


def due_for_review(progress_rows: Iterable, now: datetime, intervals: Sequence[int] = REVIEW_INTERVALS) -> List[Dict[str, Any]]:
    """
    Progress rows whose age in days is exactly one of the review intervals,
    oldest first. Rows never accessed are never due.
    """
    due = []
    for row in progress_rows:
        if row.last_accessed_at is None:
            continue
        elapsed = days_since(row.last_accessed_at, now)
        if elapsed in intervals:
            due.append({"lessonId": row.lesson_id, "title": row.lesson.title, "daysSince": elapsed})
    return sorted(due, key=lambda item: -item["daysSince"])


# ===============================================================================
# LLM Course Recommendations
# ===============================================================================


class RecommendationsUnavailable(UpstreamServiceError):
    """The LLM provider is not configured or failed to answer"""


class CoursePick(BaseModel):
    id: int
    reason: str = ""


class CoursePicks(BaseModel):
    recommendations: List[CoursePick] = []


@lru_cache(maxsize=1)
def get_openai_client():
    """Single OpenAI client shared by all recommendation calls"""
    import openai

    return openai.OpenAI(api_key=settings.OPENAI_API_KEY)


def _course_summary(course: Course) -> Dict[str, Any]:
    return {
        "id": course.id,
        "title": course.title,
        "description": course.description,
        "category": course.category,
        "difficulty": course.difficulty,
    }


def build_recommendation_prompt(profile: Dict[str, Any], candidates: List[Course]) -> Dict[str, str]:
    items = json.dumps([_course_summary(course) for course in candidates], ensure_ascii=False)
    return {
        "system": "You are a learning assistant. Return only valid JSON.",
        "user": f"""Given a learner profile and a list of courses, pick the top {MAX_RECOMMENDATIONS} courses for this learner.
Focus on matching goals, topics, difficulty and novelty.

Respond with a JSON object of the form {{"recommendations": [{{"id": <course id>, "reason": "<one sentence>"}}]}}.

PROFILE={json.dumps(profile, ensure_ascii=False, default=str)}
COURSES={items}""",
    }


def rerank_courses(profile: Dict[str, Any], candidates: List[Course]) -> List[Dict[str, Any]]:
    """
    Ask the LLM to pick and order courses from ``candidates``.

    Picks that do not name a candidate are dropped.

    Raises:
        RecommendationsUnavailable: missing API key, provider error or unparseable answer
    """
    if not settings.OPENAI_API_KEY:
        raise RecommendationsUnavailable("Missing OPENAI_API_KEY")
    if not candidates:
        return []

    prompt = build_recommendation_prompt(profile, candidates[:MAX_CANDIDATE_COURSES])
    try:
        client = get_openai_client()
        response = client.chat.completions.create(
            model=settings.LLM_MODEL,
            messages=[
                {"role": "system", "content": prompt["system"]},
                {"role": "user", "content": prompt["user"]},
            ],
            response_format={"type": "json_object"},
            temperature=0.2,
        )
        picks = CoursePicks.model_validate_json(response.choices[0].message.content or "{}")
    except ValidationError as e:
        logger.error("Unparseable recommendation answer", category=LogCategory.BUSINESS, exception=e)
        raise RecommendationsUnavailable("Invalid recommendation response") from e
    except Exception as e:
        logger.error("Recommendation request failed", category=LogCategory.BUSINESS, exception=e)
        raise RecommendationsUnavailable("Recommendation provider failed") from e

    by_id = {course.id: course for course in candidates}
    results = []
    for pick in picks.recommendations[:MAX_RECOMMENDATIONS]:
        course = by_id.get(pick.id)
        if course is not None:
            results.append({"course": _course_summary(course), "reason": pick.reason})
    return results
