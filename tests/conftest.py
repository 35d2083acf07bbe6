import pytest
import os
import sys
from datetime import datetime
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment variables before the app reads its settings
os.environ["NODE_ENV"] = "test"
os.environ.pop("DATABASE_URL", None)
os.environ["SESSION_SECRET"] = "test_session_secret"
os.environ["OPENAI_API_KEY"] = "test_openai_key"
os.environ["ANALYTICS_TIMEZONE"] = "UTC"

from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from app import app
from db import get_db, engine
from models import Base, Course, Lesson, Module, User
from utils import clock
from utils.jwt_utils import jwt_manager


@pytest.fixture(scope="session")
def test_engine():
    """In-memory SQLite engine; tables are created when db is imported with NODE_ENV=test"""
    return engine


@pytest.fixture(scope="function")
def test_db(test_engine):
    """Create test database session"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    # Clear all tables
    with test_engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(scope="function")
def client(test_db):
    """Test client whose requests share the test session"""

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def frozen_clock(monkeypatch):
    """Controllable clock: set ``frozen_clock.now`` to move time"""

    class FrozenClock:
        now = datetime(2024, 3, 4, 9, 0, 0)

    frozen = FrozenClock()
    monkeypatch.setattr(clock, "utcnow", lambda: frozen.now)
    return frozen


@pytest.fixture
def learner(test_db):
    user = User(external_id="learner-subject-1", username="learner")
    test_db.add(user)
    test_db.commit()
    return user


@pytest.fixture
def other_learner(test_db):
    user = User(external_id="learner-subject-2", username="other")
    test_db.add(user)
    test_db.commit()
    return user


def bearer_headers(user: User) -> dict:
    token = jwt_manager.create_session_token(user.external_id, username=user.username)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(learner):
    return bearer_headers(learner)


@pytest.fixture
def build_course(test_db):
    """
    Factory creating a course whose modules hold the given number of lessons,
    e.g. ``build_course([2, 1])`` for two modules with two and one lesson
    """

    def _build(lessons_per_module=(3,), title="Solar Energy Basics", **course_fields):
        course = Course(title=title, description=f"{title} description", **course_fields)
        test_db.add(course)
        test_db.flush()
        for module_index, lesson_count in enumerate(lessons_per_module, start=1):
            module = Module(course_id=course.id, title=f"Module {module_index}", order_index=module_index)
            test_db.add(module)
            test_db.flush()
            for lesson_index in range(1, lesson_count + 1):
                test_db.add(
                    Lesson(
                        module_id=module.id,
                        title=f"Lesson {module_index}.{lesson_index}",
                        order_index=lesson_index,
                    )
                )
        test_db.commit()
        test_db.refresh(course)
        return course

    return _build


@pytest.fixture
def headers_for():
    """Bearer headers for any learner"""
    return bearer_headers
