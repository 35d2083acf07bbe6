"""
Learning Analytics Aggregation

Derived statistics recomputed from raw session, slide view and interaction
rows at request time. The aggregation functions are pure: given the same
rows in the same (ascending id) order they return the same result, and every
ranking uses a stable sort so equal counts keep first-seen order.
"""

import time
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import CourseAnalytics, CourseSession, Enrollment, InteractionEvent, SlideView
from utils import clock
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("analytics")


# ===============================================================================
# Configuration Constants
# ===============================================================================

MOST_VIEWED_LIMIT = 5
STRUGGLING_LIMIT = 5
TOP_INTERACTIONS_LIMIT = 10
RECENT_SESSIONS_LIMIT = 10

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


# ===============================================================================
# Session Insights
# ===============================================================================


def completed_sessions(sessions: Iterable) -> List:
    """Sessions with an end timestamp; in-progress sessions are excluded"""
    return [s for s in sessions if s.ended_at is not None]


def average_session_duration(sessions: Iterable) -> float:
    """
    Mean total_duration in seconds over ended sessions.

    An unterminated session is left out of both the sum and the count rather
    than being treated as a zero-length session.
    """
    finished = completed_sessions(sessions)
    if not finished:
        return 0.0
    return sum(s.total_duration or 0 for s in finished) / len(finished)


# ===============================================================================
# Slide Engagement
# ===============================================================================


def slide_statistics(views: Iterable) -> List[Dict[str, Any]]:
    """Group slide views by slide id, in first-seen order"""
    groups: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for view in views:
        group = groups.get(view.slide_id)
        if group is None:
            group = {"count": 0, "time": 0, "scroll": 0, "completed": False}
            groups[view.slide_id] = group
        group["count"] += 1
        group["time"] += view.time_spent or 0
        group["scroll"] += view.scroll_depth or 0
        group["completed"] = group["completed"] or bool(view.completed)

    return [
        {
            "slideId": slide_id,
            "viewCount": group["count"],
            "avgTimeSpent": group["time"] / group["count"],
            "avgScrollDepth": group["scroll"] / group["count"],
            "completed": group["completed"],
        }
        for slide_id, group in groups.items()
    ]


def most_viewed_slides(stats: List[Dict[str, Any]], limit: int = MOST_VIEWED_LIMIT) -> List[Dict[str, Any]]:
    return sorted(stats, key=lambda s: -s["viewCount"])[:limit]


def struggling_slides(stats: List[Dict[str, Any]], limit: int = STRUGGLING_LIMIT) -> List[Dict[str, Any]]:
    """Never-completed slides with the shallowest average scroll depth first"""
    never_completed = [s for s in stats if not s["completed"]]
    return sorted(never_completed, key=lambda s: s["avgScrollDepth"])[:limit]


# ===============================================================================
# Temporal Engagement
# ===============================================================================


def engagement_by_hour(sessions: Iterable, tz: ZoneInfo) -> Dict[int, int]:
    """Session starts per hour of day (0-23) in the reporting timezone"""
    histogram = {hour: 0 for hour in range(24)}
    for session in sessions:
        histogram[clock.to_reporting(session.started_at, tz).hour] += 1
    return histogram


def engagement_by_weekday(sessions: Iterable, tz: ZoneInfo) -> Dict[str, int]:
    """Session starts per weekday name in the reporting timezone"""
    histogram = {name: 0 for name in WEEKDAY_NAMES}
    for session in sessions:
        histogram[WEEKDAY_NAMES[clock.to_reporting(session.started_at, tz).weekday()]] += 1
    return histogram


# ===============================================================================
# Interaction Ranking
# ===============================================================================


def interaction_ranking(events: Iterable, limit: int = TOP_INTERACTIONS_LIMIT) -> List[Dict[str, Any]]:
    counts: "OrderedDict[tuple, int]" = OrderedDict()
    for event in events:
        key = (event.event_type, event.event_name)
        counts[key] = counts.get(key, 0) + 1

    ranked = [{"eventType": event_type, "eventName": event_name, "count": count} for (event_type, event_name), count in counts.items()]
    return sorted(ranked, key=lambda r: -r["count"])[:limit]


def calculate_insights(sessions: List, views: List, events: List, tz: ZoneInfo) -> Dict[str, Any]:
    """
    Combine all per-course insights.

    Args:
        sessions: CourseSession rows in ascending id order
        views: SlideView rows in ascending id order
        events: InteractionEvent rows in ascending id order
        tz: reporting timezone for the temporal histograms
    """
    stats = slide_statistics(views)
    avg_duration = average_session_duration(sessions)

    return {
        "avgSessionDuration": avg_duration,
        "avgSessionMinutes": round(avg_duration / 60),
        "totalSessions": len(sessions),
        "completedSessions": len(completed_sessions(sessions)),
        "mostViewedSlides": most_viewed_slides(stats),
        "strugglingSlides": struggling_slides(stats),
        "engagementPatterns": {
            "byHour": engagement_by_hour(sessions, tz),
            "byDay": engagement_by_weekday(sessions, tz),
            "timezone": str(tz),
        },
        "topInteractions": interaction_ranking(events),
    }


# ===============================================================================
# Daily Progress Series
# ===============================================================================


def progress_time_series(progress_rows: Iterable, since: date, range_days: int, tz: ZoneInfo) -> Dict[str, Any]:
    """
    Daily minutes/rows/completions bucketed by last-accessed date, zero-filled
    from ``since`` for ``range_days`` + 1 days, with a day-of-week rollup
    (0 = Sunday ... 6 = Saturday).
    """
    daily: Dict[str, Dict[str, int]] = {}
    for row in progress_rows:
        if row.last_accessed_at is None:
            continue
        key = clock.reporting_date(row.last_accessed_at, tz).isoformat()
        bucket = daily.setdefault(key, {"minutes": 0, "sessions": 0, "completed": 0})
        bucket["minutes"] += round((row.time_spent or 0) / 60)
        bucket["sessions"] += 1
        if row.completed:
            bucket["completed"] += 1

    for offset in range(range_days + 1):
        daily.setdefault((since + timedelta(days=offset)).isoformat(), {"minutes": 0, "sessions": 0, "completed": 0})

    series = [{"date": key, **daily[key]} for key in sorted(daily)]

    by_dow = [{"dow": dow, "minutes": 0, "sessions": 0} for dow in range(7)]
    for entry in series:
        dow = date.fromisoformat(entry["date"]).isoweekday() % 7
        by_dow[dow]["minutes"] += entry["minutes"]
        by_dow[dow]["sessions"] += entry["sessions"]

    return {"daily": series, "byDow": by_dow}


# ===============================================================================
# Serialization
# ===============================================================================


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_session(session: CourseSession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "courseId": session.course_id,
        "startedAt": _iso(session.started_at),
        "endedAt": _iso(session.ended_at),
        "totalDuration": session.total_duration,
        "totalSlides": session.total_slides,
        "completedSlides": session.completed_slides,
    }


def serialize_enrollment(enrollment: Optional[Enrollment]) -> Optional[Dict[str, Any]]:
    if enrollment is None:
        return None
    return {
        "id": enrollment.id,
        "courseId": enrollment.course_id,
        "progress": enrollment.progress,
        "enrolledAt": _iso(enrollment.enrolled_at),
    }


def serialize_course_analytics(row: Optional[CourseAnalytics]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {
        "courseId": row.course_id,
        "totalSessions": row.total_sessions,
        "totalTimeSpent": row.total_time_spent,
        "averageSessionLength": row.average_session_length,
        "totalInteractions": row.total_interactions,
        "completionRate": row.completion_rate,
        "firstAccessedAt": _iso(row.first_accessed_at),
        "lastAccessedAt": _iso(row.last_accessed_at),
    }


# ===============================================================================
# Database Access
# ===============================================================================


def fetch_course_records(db: Session, user_id: int, course_id: int):
    """Sessions, slide views and interactions of one learner in one course, by ascending id"""
    started = time.perf_counter()
    sessions = (
        db.query(CourseSession)
        .filter(CourseSession.user_id == user_id, CourseSession.course_id == course_id)
        .order_by(CourseSession.id.asc())
        .all()
    )
    views = (
        db.query(SlideView)
        .join(CourseSession, SlideView.session_id == CourseSession.id)
        .filter(SlideView.user_id == user_id, CourseSession.course_id == course_id)
        .order_by(SlideView.id.asc())
        .all()
    )
    events = (
        db.query(InteractionEvent)
        .join(CourseSession, InteractionEvent.session_id == CourseSession.id)
        .filter(InteractionEvent.user_id == user_id, CourseSession.course_id == course_id)
        .order_by(InteractionEvent.id.asc())
        .all()
    )
    logger.database(
        "select",
        "course_sessions, slide_views, interaction_events",
        (time.perf_counter() - started) * 1000,
        user_id=user_id,
    )
    return sessions, views, events


def refresh_course_analytics(
    db: Session, user_id: int, course_id: int, sessions: List, events: List, enrollment: Optional[Enrollment]
) -> CourseAnalytics:
    """Upsert the denormalized per-(user, course) row from freshly computed figures"""
    finished = completed_sessions(sessions)
    values = {
        "total_sessions": len(sessions),
        "total_time_spent": sum(s.total_duration or 0 for s in finished),
        "average_session_length": int(average_session_duration(sessions)),
        "total_interactions": len(events),
        "completion_rate": enrollment.progress if enrollment else 0.0,
        "first_accessed_at": min((s.started_at for s in sessions), default=None),
        "last_accessed_at": max((s.started_at for s in sessions), default=None),
    }

    def _apply(row):
        for key, value in values.items():
            setattr(row, key, value)
        row.updated_at = clock.utcnow()

    row = db.query(CourseAnalytics).filter_by(user_id=user_id, course_id=course_id).first()
    if row is None:
        row = CourseAnalytics(user_id=user_id, course_id=course_id)
        _apply(row)
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent read created the row first
            db.rollback()
            row = db.query(CourseAnalytics).filter_by(user_id=user_id, course_id=course_id).one()
            _apply(row)
            db.commit()
    else:
        _apply(row)
        db.commit()

    logger.debug(
        "Course analytics refreshed",
        category=LogCategory.ANALYTICS,
        user_id=user_id,
        course_id=course_id, extra={"sessions": len(sessions)},
    )
    return row
