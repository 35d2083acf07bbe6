"""
Progress Tracking Router
Accepts session lifecycle events from the session tracker and exposes the
caller's stored progress
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import SQLAlchemyError

from models import CourseAnalytics, CourseSession, Enrollment, Lesson, Module, Progress, User
from db import get_db
from schemas.validation import ProgressEventEnvelope
from utils.auth_dependencies import get_current_user
from utils.course_analytics import serialize_course_analytics, serialize_enrollment, serialize_session
from utils.error_handling import handle_database_error
from utils.progress_ingestion import EVENT_HANDLERS
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("routes.progress")

router = APIRouter()


@router.post(
    "",
    summary="Submit Session Event",
    description="Record a session lifecycle event: session_start, slide_view, interaction, slide_complete or session_end",
    responses={
        200: {"description": "Event recorded"},
        400: {"description": "Missing or malformed payload"},
        401: {"description": "Unauthenticated"},
        404: {"description": "Course, lesson or session not found for the caller"},
        409: {"description": "Session already ended or achievement already earned"},
    },
)
def submit_progress_event(
    event: ProgressEventEnvelope = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    ## Submit a Session Lifecycle Event

    ### Event Types:
    - **session_start**: `courseId`, `totalSlides` → `{sessionId}`
    - **slide_view**: `sessionId`, `slideId`, `timeSpent` delta, `scrollDepth`
    - **interaction**: `sessionId` plus one interaction or an `events` batch
    - **slide_complete**: `sessionId`, `slideId`, optional `lessonId` and `achievementId`
    - **session_end**: `sessionId`; duration is computed server-side
    """
    handler = EVENT_HANDLERS[event.type]
    try:
        return handler(db, current_user, event.data)
    except HTTPException:
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"Database error while recording {event.type}",
            exception=e,
            user_id=current_user.id,
        )
        handle_database_error(e, f"record {event.type}")


@router.get(
    "",
    summary="Get Progress",
    description="All progress rows of the caller, or session/analytics/enrollment state for one course",
)
def get_progress(
    courseId: Optional[int] = Query(None, gt=0, description="Course to summarize"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if courseId is None:
        rows = (
            db.query(Progress)
            .options(joinedload(Progress.lesson).joinedload(Lesson.module).joinedload(Module.course))
            .filter(Progress.user_id == current_user.id)
            .order_by(Progress.id.asc())
            .all()
        )
        return [
            {
                "id": row.id,
                "lessonId": row.lesson_id,
                "lessonTitle": row.lesson.title,
                "moduleId": row.lesson.module_id,
                "courseId": row.lesson.module.course_id,
                "courseTitle": row.lesson.module.course.title,
                "completed": row.completed,
                "completedAt": row.completed_at.isoformat() if row.completed_at else None,
                "timeSpent": row.time_spent,
                "lastAccessedAt": row.last_accessed_at.isoformat() if row.last_accessed_at else None,
            }
            for row in rows
        ]

    analytics = db.query(CourseAnalytics).filter_by(user_id=current_user.id, course_id=courseId).first()
    current_session = (
        db.query(CourseSession)
        .filter(
            CourseSession.user_id == current_user.id,
            CourseSession.course_id == courseId,
            CourseSession.ended_at.is_(None),
        )
        .order_by(CourseSession.started_at.desc(), CourseSession.id.desc())
        .first()
    )
    enrollment = db.query(Enrollment).filter_by(user_id=current_user.id, course_id=courseId).first()

    logger.debug("Progress summary served", category=LogCategory.BUSINESS, user_id=current_user.id)
    return {
        "analytics": serialize_course_analytics(analytics),
        "currentSession": serialize_session(current_session) if current_session else None,
        "enrollment": serialize_enrollment(enrollment),
    }
