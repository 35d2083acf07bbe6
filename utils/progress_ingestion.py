"""
Progress ingestion

Handlers for the session lifecycle events accepted by POST /progress. Each
handler validates its payload before writing anything, checks that the
referenced session belongs to the caller, and returns the JSON-ready result.
Time on slides always arrives as a delta and is applied as an in-database
increment, so overlapping reports for the same slide accumulate.
"""

from typing import Any, Dict, List, Optional, Type

from fastapi import HTTPException, status
from pydantic import BaseModel, ValidationError
from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Course, CourseSession, InteractionEvent, Lesson, Progress, SlideView, User
from schemas.api_models import (
    BaseResponse,
    InteractionBatchResponse,
    SessionEndResponse,
    SessionStartResponse,
    SlideCompleteResponse,
)
from schemas.validation import (
    InteractionBatchSchema,
    InteractionSchema,
    SessionEndSchema,
    SessionStartSchema,
    SlideCompleteSchema,
    SlideViewSchema,
)
from utils import clock
from utils.error_handling import conflict_error, format_validation_errors, validation_error
from utils.gamification import (
    AchievementAlreadyEarnedError,
    AchievementNotFoundError,
    award_achievement,
    course_id_for_lesson,
    recompute_enrollment_progress,
    recompute_learning_minutes,
    serialize_achievement,
    update_streak,
)
from utils.social import ActivityType, record_activity
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("progress.ingestion")


def parse_payload(schema: Type[BaseModel], data: Dict[str, Any]) -> BaseModel:
    """Validate an event payload, rejecting it with 400 before any write"""
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        errors = format_validation_errors(e.errors())
        message = "; ".join(f"{err['field']}: {err['message']}" for err in errors)
        raise validation_error(f"Invalid payload - {message}")


def get_owned_session(db: Session, user: User, session_id: int, allow_closed: bool = False) -> CourseSession:
    """Session by id if it belongs to the caller; 404 otherwise, 409 when already closed"""
    session = db.query(CourseSession).filter(CourseSession.id == session_id).first()
    if session is None or session.user_id != user.id:
        logger.warning(
            "Session not found for caller",
            category=LogCategory.TRACKING,
            user_id=user.id,
            session_id=session_id,
        )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    if not allow_closed and not session.is_open:
        raise conflict_error("Session already ended")
    return session


# ===============================================================================
# Shared write helpers
# ===============================================================================


def _accumulate_slide_view(db: Session, user: User, session: CourseSession, payload, completed: bool) -> None:
    values = {
        SlideView.time_spent: SlideView.time_spent + payload.timeSpent,
        SlideView.updated_at: clock.utcnow(),
    }
    scroll_depth = getattr(payload, "scrollDepth", None)
    if scroll_depth is not None:
        values[SlideView.scroll_depth] = case(
            (SlideView.scroll_depth < scroll_depth, scroll_depth), else_=SlideView.scroll_depth
        )
    if completed:
        values[SlideView.completed] = True

    def _update() -> int:
        return (
            db.query(SlideView)
            .filter(SlideView.session_id == session.id, SlideView.slide_id == payload.slideId)
            .update(values, synchronize_session=False)
        )

    if _update():
        return

    db.add(
        SlideView(
            user_id=user.id,
            session_id=session.id,
            slide_id=payload.slideId,
            module_id=payload.moduleId,
            sub_module_id=getattr(payload, "subModuleId", None),
            time_spent=payload.timeSpent,
            scroll_depth=scroll_depth or 0,
            completed=completed,
        )
    )
    try:
        db.flush()
    except IntegrityError:
        # A concurrent report inserted the row first; merge into it instead
        db.rollback()
        _update()


def _require_lesson(db: Session, session: CourseSession, lesson_id: Optional[int]) -> Optional[Lesson]:
    """The referenced lesson, which must belong to the session's course"""
    if lesson_id is None:
        return None
    lesson = db.get(Lesson, lesson_id)
    if lesson is None or course_id_for_lesson(db, lesson.id) != session.course_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lesson not found")
    return lesson


def _touch_progress(db: Session, user: User, lesson: Lesson, time_delta: int, complete: bool) -> Progress:
    now = clock.utcnow()
    progress = db.query(Progress).filter_by(user_id=user.id, lesson_id=lesson.id).first()
    if progress is None:
        progress = Progress(user_id=user.id, lesson_id=lesson.id, completed=False, time_spent=0)
        db.add(progress)
        db.flush()

    values = {Progress.time_spent: Progress.time_spent + time_delta, Progress.last_accessed_at: now}
    if complete and not progress.completed:
        values[Progress.completed] = True
        values[Progress.completed_at] = now
        record_activity(db, user.id, ActivityType.LESSON_COMPLETED, f"Completed {lesson.title}", lesson_id=lesson.id)
    db.query(Progress).filter(Progress.id == progress.id).update(values, synchronize_session=False)
    db.flush()
    db.refresh(progress)
    return progress


# ===============================================================================
# Event handlers
# ===============================================================================


def handle_session_start(db: Session, user: User, data: Dict[str, Any]) -> Dict[str, Any]:
    payload = parse_payload(SessionStartSchema, data)

    course = db.get(Course, payload.courseId)
    if course is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Course not found")

    now = clock.utcnow()
    session = CourseSession(
        user_id=user.id,
        course_id=course.id,
        started_at=now,
        total_slides=payload.totalSlides,
        device_info=payload.deviceInfo,
    )
    db.add(session)
    update_streak(user, now)
    db.commit()
    db.refresh(session)

    logger.info(
        "Learning session started",
        category=LogCategory.TRACKING,
        user_id=user.id,
        session_id=session.id,
        course_id=course.id,
    )
    return SessionStartResponse(sessionId=session.id).model_dump()


def handle_slide_view(db: Session, user: User, data: Dict[str, Any]) -> Dict[str, Any]:
    payload = parse_payload(SlideViewSchema, data)
    session = get_owned_session(db, user, payload.sessionId)
    lesson = _require_lesson(db, session, payload.lessonId)

    _accumulate_slide_view(db, user, session, payload, completed=payload.completed)
    if lesson is not None:
        _touch_progress(db, user, lesson, payload.timeSpent, complete=False)
        recompute_learning_minutes(db, user)
    db.commit()

    return BaseResponse().model_dump(exclude_none=True)


def handle_interaction(db: Session, user: User, data: Dict[str, Any]) -> Dict[str, Any]:
    envelope = parse_payload(InteractionBatchSchema, data)

    if "events" in data:
        entries: List[Any] = envelope.events
        if not entries:
            raise validation_error("No interactions supplied")
    else:
        # Single interaction: the entry is the payload itself and must be valid
        single = {key: value for key, value in data.items() if key != "sessionId"}
        parse_payload(InteractionSchema, single)
        entries = [single]

    session = get_owned_session(db, user, envelope.sessionId)

    recorded = 0
    skipped = []
    for index, entry in enumerate(entries):
        try:
            interaction = InteractionSchema.model_validate(entry)
        except ValidationError as e:
            errors = format_validation_errors(e.errors())
            skipped.append({"index": index, "error": "; ".join(f"{err['field']}: {err['message']}" for err in errors)})
            continue

        db.add(
            InteractionEvent(
                user_id=user.id,
                session_id=session.id,
                slide_id=interaction.slideId,
                event_type=interaction.eventType,
                event_name=interaction.eventName,
                event_data=interaction.eventData,
                created_at=clock.utcnow(),
            )
        )
        recorded += 1

    db.commit()

    if skipped:
        logger.warning(
            "Malformed interactions skipped",
            category=LogCategory.TRACKING,
            user_id=user.id,
            session_id=session.id, extra={"skipped": len(skipped), "recorded": recorded},
        )
    return InteractionBatchResponse(recorded=recorded, skipped=skipped).model_dump(exclude_none=True)


def handle_slide_complete(db: Session, user: User, data: Dict[str, Any]) -> Dict[str, Any]:
    payload = parse_payload(SlideCompleteSchema, data)
    session = get_owned_session(db, user, payload.sessionId)
    lesson = _require_lesson(db, session, payload.lessonId)

    # Slide, lesson progress, learning minutes and enrollment percentage commit together
    _accumulate_slide_view(db, user, session, payload, completed=True)

    result = SlideCompleteResponse()
    if lesson is not None:
        progress = _touch_progress(db, user, lesson, payload.timeSpent, complete=True)
        result.lessonCompleted = progress.completed
        result.enrollmentProgress = recompute_enrollment_progress(db, user.id, session.course_id)
    result.learningMinutes = recompute_learning_minutes(db, user)
    db.commit()

    body = result.model_dump(exclude_none=True)
    if payload.achievementId is not None:
        try:
            earned = award_achievement(db, user, payload.achievementId)
        except AchievementNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Achievement not found")
        except AchievementAlreadyEarnedError as e:
            raise conflict_error(e.message)
        body["achievement"] = serialize_achievement(earned.achievement)
        body["newXP"] = user.xp

    return body


def handle_session_end(db: Session, user: User, data: Dict[str, Any]) -> Dict[str, Any]:
    payload = parse_payload(SessionEndSchema, data)
    session = get_owned_session(db, user, payload.sessionId, allow_closed=True)

    if not session.is_open:
        # Closing twice keeps the first close
        return SessionEndResponse(
            sessionId=session.id, totalDuration=session.total_duration, endedAt=session.ended_at
        ).model_dump(mode="json", exclude_none=True)

    ended_at = clock.utcnow()
    session.ended_at = ended_at
    # Duration is always derived from the stored start, never from client input
    session.total_duration = max(0, int((ended_at - session.started_at).total_seconds()))
    session.completed_slides = payload.completedSlides
    if payload.progressSnapshot is not None:
        session.progress_snapshot = payload.progressSnapshot
    db.commit()

    logger.info(
        "Learning session ended",
        category=LogCategory.TRACKING,
        user_id=user.id,
        session_id=session.id, extra={"total_duration": session.total_duration},
    )
    return SessionEndResponse(
        sessionId=session.id, totalDuration=session.total_duration, endedAt=ended_at
    ).model_dump(mode="json", exclude_none=True)


EVENT_HANDLERS = {
    "session_start": handle_session_start,
    "slide_view": handle_slide_view,
    "interaction": handle_interaction,
    "slide_complete": handle_slide_complete,
    "session_end": handle_session_end,
}
