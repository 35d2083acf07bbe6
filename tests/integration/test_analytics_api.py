"""
Integration Tests for the Analytics Endpoints
"""

from datetime import datetime, timedelta

import pytest
from fastapi import status

from models import CourseAnalytics, CourseSession, InteractionEvent, Progress, SlideView


@pytest.fixture
def recorded_course(build_course, learner, test_db):
    """A course with two ended sessions, one open session, slide views and interactions"""
    course = build_course([2])
    start = datetime(2024, 3, 4, 9, 0)
    sessions = [
        CourseSession(user_id=learner.id, course_id=course.id, started_at=start, ended_at=start + timedelta(seconds=100), total_duration=100),
        CourseSession(user_id=learner.id, course_id=course.id, started_at=start + timedelta(hours=1), ended_at=start + timedelta(hours=1, seconds=200), total_duration=200),
        CourseSession(user_id=learner.id, course_id=course.id, started_at=start + timedelta(hours=2)),
    ]
    test_db.add_all(sessions)
    test_db.flush()

    test_db.add_all(
        [
            SlideView(user_id=learner.id, session_id=sessions[0].id, slide_id="intro", time_spent=30, scroll_depth=100, completed=True),
            SlideView(user_id=learner.id, session_id=sessions[1].id, slide_id="intro", time_spent=10, scroll_depth=50),
            SlideView(user_id=learner.id, session_id=sessions[1].id, slide_id="turbines", time_spent=5, scroll_depth=20),
            InteractionEvent(user_id=learner.id, session_id=sessions[0].id, event_type="click", event_name="next"),
            InteractionEvent(user_id=learner.id, session_id=sessions[1].id, event_type="click", event_name="next"),
            InteractionEvent(user_id=learner.id, session_id=sessions[1].id, event_type="video", event_name="play"),
        ]
    )
    test_db.commit()
    return course


class TestCourseAnalytics:
    def test_insights(self, client, auth_headers, recorded_course):
        response = client.get(f"/analytics/course/{recorded_course.id}", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        insights = response.json()["insights"]
        assert insights["avgSessionDuration"] == 150
        assert insights["totalSessions"] == 3
        assert insights["completedSessions"] == 2
        assert insights["mostViewedSlides"][0]["slideId"] == "intro"
        assert [s["slideId"] for s in insights["strugglingSlides"]] == ["turbines"]
        assert insights["engagementPatterns"]["byHour"]["9"] == 1
        assert insights["engagementPatterns"]["byDay"]["Monday"] == 3
        assert insights["topInteractions"][0] == {"eventType": "click", "eventName": "next", "count": 2}

    def test_response_sections(self, client, auth_headers, recorded_course):
        body = client.get(f"/analytics/course/{recorded_course.id}", headers=auth_headers).json()

        assert len(body["recentSessions"]) == 3
        assert body["recentSessions"][0]["endedAt"] is None
        assert len(body["slideStatistics"]) == 2
        assert body["interactionStats"][1]["eventName"] == "play"
        assert body["enrollment"] is None
        assert body["analytics"]["totalSessions"] == 3

    def test_aggregate_row_is_refreshed(self, client, auth_headers, recorded_course, learner, test_db):
        client.get(f"/analytics/course/{recorded_course.id}", headers=auth_headers)
        client.get(f"/analytics/course/{recorded_course.id}", headers=auth_headers)

        row = test_db.query(CourseAnalytics).filter_by(user_id=learner.id, course_id=recorded_course.id).one()
        assert row.total_sessions == 3
        assert row.total_time_spent == 300
        assert row.average_session_length == 150
        assert row.total_interactions == 3

    def test_other_learners_see_empty_analytics(self, client, recorded_course, other_learner, headers_for):
        body = client.get(f"/analytics/course/{recorded_course.id}", headers=headers_for(other_learner)).json()
        assert body["insights"]["totalSessions"] == 0
        assert body["insights"]["avgSessionDuration"] == 0

    def test_unknown_course(self, client, auth_headers):
        response = client.get("/analytics/course/9999", headers=auth_headers)
        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestProgressSeries:
    def test_daily_series_is_zero_filled(self, client, auth_headers, build_course, learner, frozen_clock, test_db):
        course = build_course([1])
        lesson = course.ordered_lessons()[0]
        test_db.add(
            Progress(
                user_id=learner.id,
                lesson_id=lesson.id,
                completed=True,
                time_spent=600,
                last_accessed_at=frozen_clock.now - timedelta(days=1),
            )
        )
        test_db.commit()

        response = client.get("/analytics/progress?rangeDays=7", headers=auth_headers)

        body = response.json()
        assert response.status_code == status.HTTP_200_OK
        assert len(body["daily"]) == 8
        yesterday = (frozen_clock.now - timedelta(days=1)).date().isoformat()
        assert next(d for d in body["daily"] if d["date"] == yesterday) == {
            "date": yesterday,
            "minutes": 10,
            "sessions": 1,
            "completed": 1,
        }
        assert sum(d["minutes"] for d in body["byDow"]) == 10

    def test_range_is_bounded(self, client, auth_headers):
        response = client.get("/analytics/progress?rangeDays=400", headers=auth_headers)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
