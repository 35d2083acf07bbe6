"""
Analytics Router
Per-course learning insights and the daily progress series
"""

from datetime import timedelta

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from models import Course, Enrollment, Progress, User
from db import get_db
from utils import clock
from utils.auth_dependencies import get_current_user
from utils.course_analytics import (
    RECENT_SESSIONS_LIMIT,
    calculate_insights,
    fetch_course_records,
    interaction_ranking,
    progress_time_series,
    refresh_course_analytics,
    serialize_course_analytics,
    serialize_enrollment,
    serialize_session,
    slide_statistics,
)
from utils.error_handling import validate_resource_exists
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("routes.analytics")

router = APIRouter()


@router.get(
    "/course/{courseId}",
    summary="Course Analytics",
    description="Session, slide and interaction analytics of the caller for one course",
)
def get_course_analytics(
    courseId: int = Path(..., gt=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    ## Course Analytics

    Recomputed from raw rows on every read; the stored aggregate row is
    refreshed with the new figures.

    ### Insights
    - **avgSessionDuration**: seconds, over ended sessions only
    - **mostViewedSlides**: top 5 by view count
    - **strugglingSlides**: never-completed slides, shallowest scroll first
    - **engagementPatterns**: session starts by hour and weekday in the reporting timezone
    - **topInteractions**: top 10 (eventType, eventName) pairs
    """
    course = db.get(Course, courseId)
    validate_resource_exists(course, "Course", courseId)

    sessions, views, events = fetch_course_records(db, current_user.id, course.id)
    enrollment = db.query(Enrollment).filter_by(user_id=current_user.id, course_id=course.id).first()
    analytics = refresh_course_analytics(db, current_user.id, course.id, sessions, events, enrollment)

    recent = sorted(sessions, key=lambda s: (s.started_at, s.id), reverse=True)[:RECENT_SESSIONS_LIMIT]

    logger.info(
        "Course analytics served",
        category=LogCategory.ANALYTICS,
        user_id=current_user.id,
        course_id=course.id, extra={"sessions": len(sessions), "views": len(views), "events": len(events)},
    )
    return {
        "analytics": serialize_course_analytics(analytics),
        "recentSessions": [serialize_session(s) for s in recent],
        "slideStatistics": slide_statistics(views),
        "interactionStats": interaction_ranking(events),
        "enrollment": serialize_enrollment(enrollment),
        "insights": calculate_insights(sessions, views, events, clock.reporting_timezone()),
    }


@router.get("/progress", summary="Daily Progress Series")
def get_progress_series(
    rangeDays: int = Query(35, ge=1, le=365, description="Days to look back"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Minutes, touched lessons and completions per day, zero-filled, plus a day-of-week rollup"""
    tz = clock.reporting_timezone()
    now = clock.utcnow()
    since = clock.reporting_date(now, tz) - timedelta(days=rangeDays)

    # Fetch a day of slack on each side; bucketing happens in the reporting timezone
    rows = (
        db.query(Progress)
        .filter(
            Progress.user_id == current_user.id,
            Progress.last_accessed_at >= now - timedelta(days=rangeDays + 1),
        )
        .order_by(Progress.id.asc())
        .all()
    )
    rows = [row for row in rows if clock.reporting_date(row.last_accessed_at, tz) >= since]

    return {"rangeDays": rangeDays, "timezone": str(tz), **progress_time_series(rows, since, rangeDays, tz)}
