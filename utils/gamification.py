"""
XP, levels, streaks and achievement awards

All XP changes are applied as in-database increments so concurrent requests
for the same learner never overwrite each other, and achievement awards rely
on the (user, achievement) unique constraint: the insert either wins or the
whole award transaction is rolled back.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Achievement, Enrollment, Lesson, Module, Progress, User, UserAchievement
from utils import clock
from utils.error_handling import ConflictError
from utils.social import ActivityType, record_activity
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("gamification")

XP_PER_LEVEL = 100


class AchievementNotFoundError(Exception):
    pass


class AchievementAlreadyEarnedError(ConflictError):
    def __init__(self):
        super().__init__("Achievement already earned")


def level_for_xp(xp: int) -> int:
    return xp // XP_PER_LEVEL + 1


def _sync_level(db: Session, user: User) -> None:
    db.refresh(user)
    level = level_for_xp(user.xp)
    if user.level != level:
        user.level = level
        db.commit()


def grant_xp(db: Session, user: User, amount: int) -> int:
    """
    Add XP as an in-database increment and commit it together with whatever
    the caller already has pending in the session. Returns the new total.
    """
    if amount > 0:
        db.query(User).filter(User.id == user.id).update({User.xp: User.xp + amount}, synchronize_session=False)
    db.commit()
    _sync_level(db, user)
    return user.xp


def award_achievement(db: Session, user: User, achievement_id: int) -> UserAchievement:
    """
    Award an achievement and its XP in a single transaction.

    Raises:
        AchievementNotFoundError: unknown achievement id
        AchievementAlreadyEarnedError: the learner already holds it, including
            when a concurrent request inserted it first
    """
    achievement = db.get(Achievement, achievement_id)
    if achievement is None:
        raise AchievementNotFoundError(achievement_id)

    earned = UserAchievement(user_id=user.id, achievement_id=achievement.id, earned_at=clock.utcnow())
    try:
        db.add(earned)
        db.flush()
        db.query(User).filter(User.id == user.id).update(
            {User.xp: User.xp + achievement.xp_reward}, synchronize_session=False
        )
        record_activity(
            db,
            user.id,
            ActivityType.ACHIEVEMENT_EARNED,
            f"Earned {achievement.name}",
            details={"achievementId": achievement.id, "xpReward": achievement.xp_reward},
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(
            "Duplicate achievement award rejected",
            category=LogCategory.BUSINESS,
            user_id=user.id,
            extra={"achievement_id": achievement_id},
        )
        raise AchievementAlreadyEarnedError()

    _sync_level(db, user)
    logger.info(
        "Achievement awarded",
        category=LogCategory.BUSINESS,
        user_id=user.id,
        extra={"achievement_id": achievement.id, "xp_reward": achievement.xp_reward, "xp": user.xp},
    )
    return earned


def serialize_achievement(achievement: Achievement) -> dict:
    return {
        "id": achievement.id,
        "name": achievement.name,
        "description": achievement.description,
        "icon": achievement.icon,
        "category": achievement.category,
        "xpReward": achievement.xp_reward,
    }


def update_streak(user: User, now: Optional[datetime] = None) -> None:
    """
    Recalculate the daily streak for activity at ``now``.

    Activity the day after the last active day extends the streak, a gap
    resets it to 1 and repeated activity on the same day leaves it unchanged.
    Days are calendar days in the reporting timezone.
    """
    now = now or clock.utcnow()
    today = clock.reporting_date(now)
    last = clock.reporting_date(user.last_activity_date) if user.last_activity_date else None

    if last is None or last < today - timedelta(days=1):
        user.current_streak = 1
    elif last == today - timedelta(days=1):
        user.current_streak = (user.current_streak or 0) + 1
    elif not user.current_streak:
        user.current_streak = 1

    user.longest_streak = max(user.longest_streak or 0, user.current_streak)
    user.last_activity_date = now


def recompute_learning_minutes(db: Session, user: User) -> int:
    """Total learning minutes derived from the learner's progress time"""
    total_seconds = db.query(func.coalesce(func.sum(Progress.time_spent), 0)).filter(Progress.user_id == user.id).scalar()
    user.learning_minutes = int(total_seconds) // 60
    return user.learning_minutes


def course_id_for_lesson(db: Session, lesson_id: int) -> Optional[int]:
    row = db.query(Module.course_id).join(Lesson, Lesson.module_id == Module.id).filter(Lesson.id == lesson_id).first()
    return row[0] if row else None


def recompute_enrollment_progress(db: Session, user_id: int, course_id: int) -> Optional[float]:
    """Completed lessons over course lessons, as a percentage, stored on the enrollment"""
    enrollment = db.query(Enrollment).filter_by(user_id=user_id, course_id=course_id).first()
    if enrollment is None:
        return None

    lesson_ids = [
        row[0]
        for row in db.query(Lesson.id).join(Module, Lesson.module_id == Module.id).filter(Module.course_id == course_id)
    ]
    if not lesson_ids:
        enrollment.progress = 0.0
        return enrollment.progress

    completed = (
        db.query(func.count(Progress.id))
        .filter(Progress.user_id == user_id, Progress.lesson_id.in_(lesson_ids), Progress.completed.is_(True))
        .scalar()
    )
    enrollment.progress = round(completed * 100.0 / len(lesson_ids), 2)
    return enrollment.progress
