"""
Suggestion Router
Adaptive next-lesson, spaced review and LLM course recommendations
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session, joinedload

from models import Course, Enrollment, Lesson, Module, Progress, QuizAttempt, User
from db import get_db
from config import settings
from schemas.api_models import AdaptiveResponse, SpacedReviewResponse
from utils import clock
from utils.access import completed_lesson_ids, load_course_outline
from utils.auth_dependencies import get_current_user
from utils.error_handling import validate_resource_exists, validation_error
from utils.recommendations import (
    MAX_CANDIDATE_COURSES,
    RECENT_ATTEMPTS_WINDOW,
    RecommendationsUnavailable,
    due_for_review,
    next_lesson_suggestion,
    rerank_courses,
)
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("routes.ai")

router = APIRouter()


def _require_course_id(courseId: Optional[int]) -> int:
    if courseId is None:
        raise validation_error("Missing courseId")
    return courseId


@router.get("/adaptive", response_model=AdaptiveResponse, summary="Next Lesson Suggestion")
def get_adaptive_suggestion(
    courseId: Optional[int] = Query(None, gt=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    ## Next Lesson Suggestion

    The first lesson in course order the caller has not completed, in
    **review** mode when one of the five most recent quiz attempts scored below
    the review threshold, otherwise **challenge**. `suggestion` is null when
    every lesson is completed.
    """
    course_id = _require_course_id(courseId)
    course = load_course_outline(db, course_id)
    validate_resource_exists(course, "Course", course_id)

    lessons = course.ordered_lessons()
    completed = completed_lesson_ids(db, current_user.id, [lesson.id for lesson in lessons])
    recent_scores = [
        row[0]
        for row in db.query(QuizAttempt.score)
        .filter(QuizAttempt.user_id == current_user.id)
        .order_by(QuizAttempt.completed_at.desc(), QuizAttempt.id.desc())
        .limit(RECENT_ATTEMPTS_WINDOW)
    ]

    suggestion = next_lesson_suggestion(lessons, completed, recent_scores, settings.REVIEW_SCORE_THRESHOLD)
    return {"suggestion": suggestion}


@router.get("/spaced", response_model=SpacedReviewResponse, summary="Lessons Due for Review")
def get_spaced_review(
    courseId: Optional[int] = Query(None, gt=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Lessons of the course last accessed exactly 1, 3, 7, 14 or 30 days ago"""
    course_id = _require_course_id(courseId)
    course = db.get(Course, course_id)
    validate_resource_exists(course, "Course", course_id)

    rows = (
        db.query(Progress)
        .options(joinedload(Progress.lesson))
        .join(Lesson, Progress.lesson_id == Lesson.id)
        .join(Module, Lesson.module_id == Module.id)
        .filter(Progress.user_id == current_user.id, Module.course_id == course.id)
        .order_by(Progress.id.asc())
        .all()
    )
    return {"due": due_for_review(rows, clock.utcnow())}


@router.get(
    "/recommendations",
    summary="Course Recommendations",
    responses={500: {"description": "LLM provider not configured or failed"}},
)
def get_course_recommendations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Published courses the caller is not enrolled in, reranked by the LLM"""
    enrolled_ids = [row[0] for row in db.query(Enrollment.course_id).filter(Enrollment.user_id == current_user.id)]
    query = db.query(Course).filter(Course.is_published.is_(True))
    if enrolled_ids:
        query = query.filter(Course.id.notin_(enrolled_ids))
    candidates = query.order_by(Course.id.asc()).limit(MAX_CANDIDATE_COURSES).all()

    recent_progress = (
        db.query(Progress)
        .filter(Progress.user_id == current_user.id)
        .order_by(Progress.id.asc())
        .limit(MAX_CANDIDATE_COURSES)
        .all()
    )
    profile = {
        "level": current_user.level,
        "xp": current_user.xp,
        "enrolledCourseIds": enrolled_ids,
        "progress": [
            {"lessonId": p.lesson_id, "completed": p.completed, "timeSpent": p.time_spent} for p in recent_progress
        ],
    }

    try:
        recommendations = rerank_courses(profile, candidates)
    except RecommendationsUnavailable as e:
        logger.error("Course recommendations unavailable", category=LogCategory.BUSINESS, user_id=current_user.id, exception=e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return {"recommendations": recommendations}
