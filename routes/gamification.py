"""
Gamification Router
Achievements, quiz attempts, learner statistics and the XP leaderboard
"""

from datetime import timedelta

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Achievement, Lesson, Progress, QuizAttempt, User, UserAchievement
from db import get_db
from schemas.api_models import LeaderboardResponse, UserStatsResponse
from schemas.validation import AchievementAwardSchema, QuizAttemptSchema
from utils import clock
from utils.auth_dependencies import get_current_user
from utils.error_handling import conflict_error, handle_database_error, log_operation_success, safe_database_operation
from utils.gamification import (
    XP_PER_LEVEL,
    AchievementAlreadyEarnedError,
    AchievementNotFoundError,
    award_achievement,
    grant_xp,
    serialize_achievement,
)
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("routes.gamification")

router = APIRouter()

AVERAGE_DAILY_WINDOW_DAYS = 30
QUIZ_XP_DIVISOR = 10


# ============================================================================
# ACHIEVEMENTS
# ============================================================================


@router.get("/achievements", summary="List Achievements")
def list_achievements(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """All achievements with the caller's earned state"""
    earned = {
        ua.achievement_id: ua.earned_at
        for ua in db.query(UserAchievement).filter(UserAchievement.user_id == current_user.id)
    }
    achievements = db.query(Achievement).order_by(Achievement.id.asc()).all()

    return {
        "achievements": [
            {
                **serialize_achievement(a),
                "earned": a.id in earned,
                "earnedDate": earned[a.id].isoformat() if a.id in earned else None,
            }
            for a in achievements
        ]
    }


@router.post(
    "/achievements",
    summary="Award Achievement",
    responses={404: {"description": "Achievement not found"}, 409: {"description": "Achievement already earned"}},
)
def earn_achievement(
    payload: AchievementAwardSchema = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        earned = award_achievement(db, current_user, payload.achievementId)
    except AchievementNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Achievement not found")
    except AchievementAlreadyEarnedError as e:
        raise conflict_error(e.message)
    except SQLAlchemyError as e:
        db.rollback()
        handle_database_error(e, "award achievement")

    return {
        "success": True,
        "achievement": serialize_achievement(earned.achievement),
        "newXP": current_user.xp,
        "level": current_user.level,
    }


# ============================================================================
# QUIZZES
# ============================================================================


@router.post("/quizzes/attempts", status_code=status.HTTP_201_CREATED, summary="Record Quiz Attempt")
def record_quiz_attempt(
    payload: QuizAttemptSchema = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    ## Record a Quiz Attempt

    Stores the attempt and grants one XP per ten score points. Recent attempt
    scores drive the review/challenge mode of the adaptive suggester.
    """
    lesson = db.get(Lesson, payload.lessonId)
    if lesson is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lesson not found")

    xp_earned = int(payload.score) // QUIZ_XP_DIVISOR
    with safe_database_operation(db, "record quiz attempt"):
        attempt = QuizAttempt(
            user_id=current_user.id,
            lesson_id=lesson.id,
            answers=payload.answers,
            score=payload.score,
            completed_at=clock.utcnow(),
        )
        db.add(attempt)
        db.flush()
        # The attempt and its XP commit together
        new_xp = grant_xp(db, current_user, xp_earned)

    log_operation_success(
        "quiz attempt", user_id=current_user.id, extra={"lesson_id": lesson.id, "score": payload.score, "xp": xp_earned}
    )
    return {
        "id": attempt.id,
        "lessonId": attempt.lesson_id,
        "score": attempt.score,
        "xpEarned": xp_earned,
        "newXP": new_xp,
        "completedAt": attempt.completed_at.isoformat(),
    }


# ============================================================================
# STATISTICS
# ============================================================================


def _average_daily_minutes(rows, tz) -> int:
    per_day = {}
    for row in rows:
        key = clock.reporting_date(row.last_accessed_at, tz)
        per_day[key] = per_day.get(key, 0) + (row.time_spent or 0)
    if not per_day:
        return 0
    return round(sum(per_day.values()) / len(per_day) / 60)


@router.get("/users/stats", response_model=UserStatsResponse, summary="Learner Statistics")
def get_user_stats(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    user_id = current_user.id

    completed_lessons = (
        db.query(func.count(Progress.id)).filter(Progress.user_id == user_id, Progress.completed.is_(True)).scalar()
    )
    total_seconds = (
        db.query(func.coalesce(func.sum(Progress.time_spent), 0)).filter(Progress.user_id == user_id).scalar()
    )
    total_quizzes = db.query(func.count(QuizAttempt.id)).filter(QuizAttempt.user_id == user_id).scalar()
    perfect_quizzes = (
        db.query(func.count(QuizAttempt.id)).filter(QuizAttempt.user_id == user_id, QuizAttempt.score >= 100).scalar()
    )
    achievements_earned = (
        db.query(func.count(UserAchievement.id)).filter(UserAchievement.user_id == user_id).scalar()
    )

    window_start = clock.utcnow() - timedelta(days=AVERAGE_DAILY_WINDOW_DAYS)
    recent = (
        db.query(Progress)
        .filter(Progress.user_id == user_id, Progress.last_accessed_at >= window_start)
        .all()
    )

    return {
        "totalXP": current_user.xp,
        "currentLevel": current_user.level,
        "nextLevelXP": current_user.level * XP_PER_LEVEL,
        "currentStreak": current_user.current_streak,
        "longestStreak": current_user.longest_streak,
        "totalLessons": completed_lessons,
        "totalQuizzes": total_quizzes,
        "perfectQuizzes": perfect_quizzes,
        "totalMinutes": round(int(total_seconds) / 60),
        "averageDaily": _average_daily_minutes(recent, clock.reporting_timezone()),
        "achievementsEarned": achievements_earned,
        "lastActivityDate": current_user.last_activity_date,
    }


# ============================================================================
# LEADERBOARD
# ============================================================================


@router.get("/gamification/leaderboard", response_model=LeaderboardResponse, summary="XP Leaderboard")
def get_leaderboard(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Learners by XP, highest first; equal XP ranks the earlier account first"""
    users = db.query(User).order_by(User.xp.desc(), User.created_at.asc(), User.id.asc()).limit(limit).all()

    logger.debug("Leaderboard served", category=LogCategory.BUSINESS, user_id=current_user.id, extra={"limit": limit})
    return {
        "leaderboard": [
            {"id": u.id, "username": u.username, "xp": u.xp, "level": u.level, "createdAt": u.created_at}
            for u in users
        ]
    }
