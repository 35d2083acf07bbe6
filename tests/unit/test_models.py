import pytest
from sqlalchemy.exc import IntegrityError

from models import Course, CourseSession, Enrollment, Lesson, Module, SlideView, User


class TestUserModel:
    """Test User model operations"""

    def test_create_user_defaults(self, test_db):
        user = User(external_id="subject-123", username="testuser")
        test_db.add(user)
        test_db.commit()

        assert user.id is not None
        assert user.xp == 0
        assert user.level == 1
        assert user.current_streak == 0
        assert user.created_at is not None

    def test_user_unique_external_id(self, test_db):
        test_db.add(User(external_id="same-subject", username="user1"))
        test_db.commit()

        test_db.add(User(external_id="same-subject", username="user2"))
        with pytest.raises(IntegrityError):
            test_db.commit()
        test_db.rollback()


class TestCourseStructure:
    def test_ordered_lessons_follow_module_then_lesson_order(self, test_db):
        course = Course(title="Wind Power")
        test_db.add(course)
        test_db.flush()
        second = Module(course_id=course.id, title="Second", order_index=2)
        first = Module(course_id=course.id, title="First", order_index=1)
        test_db.add_all([second, first])
        test_db.flush()
        test_db.add_all(
            [
                Lesson(module_id=second.id, title="C", order_index=1),
                Lesson(module_id=first.id, title="B", order_index=2),
                Lesson(module_id=first.id, title="A", order_index=1),
            ]
        )
        test_db.commit()
        test_db.refresh(course)

        assert [lesson.title for lesson in course.ordered_lessons()] == ["A", "B", "C"]


class TestUniqueConstraints:
    def test_one_enrollment_per_user_and_course(self, test_db, learner, build_course):
        course = build_course([1])
        test_db.add(Enrollment(user_id=learner.id, course_id=course.id))
        test_db.commit()

        test_db.add(Enrollment(user_id=learner.id, course_id=course.id))
        with pytest.raises(IntegrityError):
            test_db.commit()
        test_db.rollback()

    def test_one_slide_view_per_session_and_slide(self, test_db, learner, build_course):
        course = build_course([1])
        session = CourseSession(user_id=learner.id, course_id=course.id)
        test_db.add(session)
        test_db.commit()

        assert session.is_open
        test_db.add(SlideView(user_id=learner.id, session_id=session.id, slide_id="intro"))
        test_db.commit()

        test_db.add(SlideView(user_id=learner.id, session_id=session.id, slide_id="intro"))
        with pytest.raises(IntegrityError):
            test_db.commit()
        test_db.rollback()
