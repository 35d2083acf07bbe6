"""
Integration Tests for Progress Ingestion
Session lifecycle events posted to /progress and the state they leave behind
"""

from datetime import timedelta

import pytest
from fastapi import status

from models import Achievement, CourseSession, InteractionEvent, Progress, SlideView, User


def post_event(client, headers, event_type, data):
    return client.post("/progress", json={"type": event_type, "data": data}, headers=headers)


@pytest.fixture
def course(build_course):
    return build_course([2])


@pytest.fixture
def started_session(client, auth_headers, course):
    response = post_event(client, auth_headers, "session_start", {"courseId": course.id, "totalSlides": 5})
    assert response.status_code == status.HTTP_200_OK
    return response.json()["sessionId"]


class TestSessionLifecycle:
    def test_start_and_end_without_events(self, client, auth_headers, course, frozen_clock, test_db):
        started_at = frozen_clock.now
        response = post_event(client, auth_headers, "session_start", {"courseId": course.id, "totalSlides": 5})
        session_id = response.json()["sessionId"]

        frozen_clock.now = started_at + timedelta(minutes=5)
        response = post_event(client, auth_headers, "session_end", {"sessionId": session_id, "totalDuration": 9999})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["totalDuration"] == 300

        session = test_db.get(CourseSession, session_id)
        test_db.refresh(session)
        assert session.ended_at == started_at + timedelta(minutes=5)
        assert session.total_duration == 300
        assert test_db.query(SlideView).count() == 0
        assert test_db.query(InteractionEvent).count() == 0

    def test_session_start_updates_streak(self, client, auth_headers, course, learner, test_db):
        post_event(client, auth_headers, "session_start", {"courseId": course.id, "totalSlides": 1})

        test_db.refresh(learner)
        assert learner.current_streak == 1
        assert learner.last_activity_date is not None

    def test_ending_twice_keeps_first_close(self, frozen_clock, client, auth_headers, started_session):
        first = post_event(client, auth_headers, "session_end", {"sessionId": started_session}).json()
        frozen_clock.now = frozen_clock.now + timedelta(hours=1)
        second = post_event(client, auth_headers, "session_end", {"sessionId": started_session})

        assert second.status_code == status.HTTP_200_OK
        assert second.json()["totalDuration"] == first["totalDuration"]
        assert second.json()["endedAt"] == first["endedAt"]

    def test_events_on_ended_session_conflict(self, client, auth_headers, started_session):
        post_event(client, auth_headers, "session_end", {"sessionId": started_session})
        response = post_event(client, auth_headers, "slide_view", {"sessionId": started_session, "slideId": "intro"})

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error"] == "Session already ended"

    def test_unknown_course(self, client, auth_headers):
        response = post_event(client, auth_headers, "session_start", {"courseId": 999, "totalSlides": 1})
        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestSlideViews:
    def test_time_accumulates_and_scroll_keeps_maximum(self, client, auth_headers, started_session, test_db):
        first = {"sessionId": started_session, "slideId": "intro", "timeSpent": 10, "scrollDepth": 40}
        second = {"sessionId": started_session, "slideId": "intro", "timeSpent": 15, "scrollDepth": 20}

        assert post_event(client, auth_headers, "slide_view", first).status_code == 200
        assert post_event(client, auth_headers, "slide_view", second).status_code == 200

        view = test_db.query(SlideView).one()
        test_db.refresh(view)
        assert view.time_spent == 25
        assert view.scroll_depth == 40
        assert view.completed is False

    def test_lesson_progress_time_is_updated(self, client, auth_headers, started_session, course, learner, test_db):
        lesson = course.ordered_lessons()[0]
        data = {"sessionId": started_session, "slideId": "intro", "lessonId": lesson.id, "timeSpent": 90}
        post_event(client, auth_headers, "slide_view", data)
        post_event(client, auth_headers, "slide_view", data)

        progress = test_db.query(Progress).filter_by(user_id=learner.id, lesson_id=lesson.id).one()
        test_db.refresh(progress)
        assert progress.time_spent == 180
        assert progress.completed is False
        assert progress.last_accessed_at is not None
        test_db.refresh(learner)
        assert learner.learning_minutes == 3

    def test_invalid_payload_writes_nothing(self, client, auth_headers, started_session, test_db):
        data = {"sessionId": started_session, "slideId": "intro", "timeSpent": -5}
        response = post_event(client, auth_headers, "slide_view", data)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"].startswith("Invalid payload")
        assert test_db.query(SlideView).count() == 0

    def test_foreign_session_is_not_found(self, client, auth_headers, course, other_learner, headers_for):
        other_session = post_event(
            client, headers_for(other_learner), "session_start", {"courseId": course.id, "totalSlides": 1}
        ).json()["sessionId"]

        response = post_event(client, auth_headers, "slide_view", {"sessionId": other_session, "slideId": "intro"})
        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestInteractions:
    def test_single_interaction(self, client, auth_headers, started_session, test_db):
        data = {"sessionId": started_session, "eventType": "click", "eventName": "next", "slideId": "intro"}
        response = post_event(client, auth_headers, "interaction", data)

        assert response.json() == {"success": True, "recorded": 1, "skipped": []}
        assert test_db.query(InteractionEvent).one().event_name == "next"

    def test_malformed_batch_entries_are_skipped(self, client, auth_headers, started_session, test_db):
        events = [
            {"eventType": "click", "eventName": "next"},
            {"eventType": "", "eventName": "broken"},
            {"eventType": "video", "eventName": "play", "eventData": {"at": 3}},
        ]
        response = post_event(client, auth_headers, "interaction", {"sessionId": started_session, "events": events})

        body = response.json()
        assert response.status_code == status.HTTP_200_OK
        assert body["recorded"] == 2
        assert [s["index"] for s in body["skipped"]] == [1]
        assert test_db.query(InteractionEvent).count() == 2

    def test_empty_batch_is_rejected(self, client, auth_headers, started_session):
        response = post_event(client, auth_headers, "interaction", {"sessionId": started_session, "events": []})
        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestSlideCompletion:
    @pytest.fixture
    def achievement(self, test_db):
        achievement = Achievement(name="Quick Learner", xp_reward=50)
        test_db.add(achievement)
        test_db.commit()
        return achievement

    def test_completion_awards_achievement_once(self, client, auth_headers, started_session, course, learner, achievement, test_db):
        lesson = course.ordered_lessons()[0]
        data = {"sessionId": started_session, "slideId": "s1", "lessonId": lesson.id, "achievementId": achievement.id}

        first = post_event(client, auth_headers, "slide_complete", data)
        assert first.status_code == status.HTTP_200_OK
        assert first.json()["newXP"] == 50
        assert first.json()["lessonCompleted"] is True

        second = post_event(client, auth_headers, "slide_complete", {**data, "slideId": "s2"})
        assert second.status_code == status.HTTP_409_CONFLICT

        test_db.refresh(learner)
        assert learner.xp == 50
        # progress writes of the rejected request stay committed
        assert test_db.query(SlideView).filter_by(slide_id="s2", completed=True).count() == 1
        assert test_db.query(Progress).filter_by(user_id=learner.id, lesson_id=lesson.id, completed=True).count() == 1

    def test_completion_updates_enrollment_progress(self, client, auth_headers, course, started_session):
        client.post(f"/courses/{course.id}/enroll", headers=auth_headers)
        lesson = course.ordered_lessons()[0]

        response = post_event(
            client, auth_headers, "slide_complete", {"sessionId": started_session, "slideId": "s1", "lessonId": lesson.id}
        )
        assert response.json()["enrollmentProgress"] == 50.0

    def test_lesson_from_another_course_is_rejected(self, client, auth_headers, started_session, build_course, learner, test_db):
        foreign_lesson = build_course([1], title="Wind Power").ordered_lessons()[0]

        for event_type in ("slide_complete", "slide_view"):
            response = post_event(
                client,
                auth_headers,
                event_type,
                {"sessionId": started_session, "slideId": "s1", "lessonId": foreign_lesson.id, "timeSpent": 30},
            )
            assert response.status_code == status.HTTP_404_NOT_FOUND

        assert test_db.query(Progress).filter_by(user_id=learner.id, lesson_id=foreign_lesson.id).count() == 0
        assert test_db.query(SlideView).count() == 0

    def test_unknown_achievement(self, client, auth_headers, started_session):
        response = post_event(
            client, auth_headers, "slide_complete", {"sessionId": started_session, "slideId": "s1", "achievementId": 404}
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestProgressEndpointErrors:
    def test_requires_authentication(self, client, course):
        response = client.post("/progress", json={"type": "session_start", "data": {"courseId": course.id, "totalSlides": 1}})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"] == "Unauthorized"

    def test_invalid_token(self, client, course):
        response = post_event(
            client, {"Authorization": "Bearer not-a-token"}, "session_start", {"courseId": course.id, "totalSlides": 1}
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_unknown_event_type(self, client, auth_headers):
        response = client.post("/progress", json={"type": "slide_dance", "data": {}}, headers=auth_headers)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "error" in response.json()

    def test_first_authentication_creates_learner(self, client, course, test_db, headers_for):
        headers = headers_for(User(external_id="brand-new-subject", username="newbie"))
        post_event(client, headers, "session_start", {"courseId": course.id, "totalSlides": 1})

        assert test_db.query(User).filter_by(external_id="brand-new-subject").count() == 1


class TestGetProgress:
    def test_course_summary_reports_open_session(self, client, auth_headers, course, started_session):
        response = client.get(f"/progress?courseId={course.id}", headers=auth_headers)

        body = response.json()
        assert body["currentSession"]["id"] == started_session
        assert body["enrollment"] is None

    def test_lists_progress_rows(self, client, auth_headers, course):
        client.post(f"/courses/{course.id}/enroll", headers=auth_headers)
        rows = client.get("/progress", headers=auth_headers).json()

        assert len(rows) == 2
        assert all(row["courseId"] == course.id and row["completed"] is False for row in rows)
