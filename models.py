from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, JSON, Text, Float
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import declarative_base, relationship

from utils import clock

Base = declarative_base()


def _now():
    return clock.utcnow()


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String, unique=True, index=True, nullable=False)  # Identity provider subject
    username = Column(String, index=True, default="Anonymous")
    xp = Column(Integer, default=0, nullable=False)
    level = Column(Integer, default=1, nullable=False)
    current_streak = Column(Integer, default=0, nullable=False)
    longest_streak = Column(Integer, default=0, nullable=False)
    last_activity_date = Column(DateTime, nullable=True)
    learning_minutes = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    achievements = relationship("UserAchievement", back_populates="user", cascade="all, delete-orphan")


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    difficulty = Column(String, nullable=True)
    is_published = Column(Boolean, default=True, nullable=False)
    enrollment_limit = Column(Integer, nullable=True)  # NULL means unlimited
    created_at = Column(DateTime, default=_now, nullable=False)

    modules = relationship(
        "Module", back_populates="course", order_by="Module.order_index", cascade="all, delete-orphan"
    )

    def ordered_lessons(self):
        """Lessons in gating order: module order_index, then lesson order_index"""
        lessons = []
        for module in sorted(self.modules, key=lambda m: (m.order_index, m.id)):
            lessons.extend(sorted(module.lessons, key=lambda l: (l.order_index, l.id)))
        return lessons


class Module(Base):
    __tablename__ = "modules"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)

    course = relationship("Course", back_populates="modules")
    lessons = relationship(
        "Lesson", back_populates="module", order_by="Lesson.order_index", cascade="all, delete-orphan"
    )


class Lesson(Base):
    __tablename__ = "lessons"

    id = Column(Integer, primary_key=True, index=True)
    module_id = Column(Integer, ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)

    module = relationship("Module", back_populates="lessons")


class Enrollment(Base):
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False)
    progress = Column(Float, default=0.0, nullable=False)  # Percentage of completed lessons
    enrolled_at = Column(DateTime, default=_now, nullable=False)

    user = relationship("User", backref="enrollments")
    course = relationship("Course", backref="enrollments")

    # Ensure unique enrollment per user-course pair
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="unique_user_course_enrollment"),)


class Progress(Base):
    __tablename__ = "progress"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    lesson_id = Column(Integer, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    time_spent = Column(Integer, default=0, nullable=False)  # seconds
    last_accessed_at = Column(DateTime, nullable=True)

    lesson = relationship("Lesson")

    __table_args__ = (
        UniqueConstraint("user_id", "lesson_id", name="unique_user_lesson_progress"),
        Index("idx_progress_user_accessed", "user_id", "last_accessed_at"),
    )


class CourseSession(Base):
    __tablename__ = "course_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    started_at = Column(DateTime, default=_now, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    total_duration = Column(Integer, default=0, nullable=False)  # seconds, set on close
    total_slides = Column(Integer, default=0, nullable=False)
    completed_slides = Column(Integer, default=0, nullable=False)
    device_info = Column(JSON, nullable=True)
    progress_snapshot = Column(JSON, nullable=True)

    slide_views = relationship("SlideView", back_populates="session", cascade="all, delete-orphan")
    interactions = relationship("InteractionEvent", back_populates="session", cascade="all, delete-orphan")

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class SlideView(Base):
    __tablename__ = "slide_views"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("course_sessions.id", ondelete="CASCADE"), nullable=False)
    slide_id = Column(String, nullable=False)
    module_id = Column(String, nullable=True)
    sub_module_id = Column(String, nullable=True)
    time_spent = Column(Integer, default=0, nullable=False)  # seconds, accumulated from deltas
    scroll_depth = Column(Integer, default=0, nullable=False)  # 0-100
    completed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    session = relationship("CourseSession", back_populates="slide_views")

    __table_args__ = (UniqueConstraint("session_id", "slide_id", name="unique_session_slide_view"),)


class InteractionEvent(Base):
    __tablename__ = "interaction_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("course_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    slide_id = Column(String, nullable=True)
    event_type = Column(String(50), nullable=False)
    event_name = Column(String(100), nullable=False)
    event_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    session = relationship("CourseSession", back_populates="interactions")


class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    lesson_id = Column(Integer, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False)
    answers = Column(JSON, nullable=False)
    score = Column(Float, nullable=False)
    completed_at = Column(DateTime, default=_now, nullable=False)


class Achievement(Base):
    __tablename__ = "achievements"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    icon = Column(String, nullable=True)
    xp_reward = Column(Integer, default=0, nullable=False)


class UserAchievement(Base):
    __tablename__ = "user_achievements"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    achievement_id = Column(Integer, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False)
    earned_at = Column(DateTime, default=_now, nullable=False)

    user = relationship("User", back_populates="achievements")
    achievement = relationship("Achievement")

    # Insert-or-fail guard against double awards
    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="unique_user_achievement"),)


class CourseAnalytics(Base):
    __tablename__ = "course_analytics"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False)
    total_sessions = Column(Integer, default=0, nullable=False)
    total_time_spent = Column(Integer, default=0, nullable=False)
    average_session_length = Column(Integer, default=0, nullable=False)
    total_interactions = Column(Integer, default=0, nullable=False)
    completion_rate = Column(Float, default=0.0, nullable=False)
    first_accessed_at = Column(DateTime, nullable=True)
    last_accessed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "course_id", name="unique_user_course_analytics"),)


class Certificate(Base):
    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    certificate_url = Column(String, nullable=False)
    issued_at = Column(DateTime, default=_now, nullable=False)

    course = relationship("Course")

    # Re-issuing refreshes the existing row
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="unique_user_course_certificate"),)


class FriendRequest(Base):
    __tablename__ = "friend_requests"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), default="PENDING", nullable=False)  # PENDING, ACCEPTED, REJECTED
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])

    __table_args__ = (UniqueConstraint("sender_id", "receiver_id", name="unique_friend_request"),)


class Friendship(Base):
    __tablename__ = "friendships"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    friend_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    user = relationship("User", foreign_keys=[user_id])
    friend = relationship("User", foreign_keys=[friend_id])

    __table_args__ = (UniqueConstraint("user_id", "friend_id", name="unique_friendship"),)


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    lesson_id = Column(Integer, ForeignKey("lessons.id", ondelete="SET NULL"), nullable=True)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    user = relationship("User")
    lesson = relationship("Lesson")

    __table_args__ = (Index("idx_activity_user_created", "user_id", "created_at"),)
