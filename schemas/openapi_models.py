"""
OpenAPI Documentation Metadata
Centralized tag definitions and application metadata
"""

from schemas.api_models import ErrorResponse


class OpenAPITags:
    """Centralized tag definitions for OpenAPI documentation"""

    PROGRESS = {
        "name": "📈 Progress Tracking",
        "description": """
        **Learning Session Ingestion**

        Session lifecycle events submitted by the session tracker:
        - **session_start / session_end**: Open and close a learning session
        - **slide_view**: Time-on-slide deltas and scroll depth
        - **interaction**: Append-only interaction log, batched
        - **slide_complete**: Slide and lesson completion with achievement awards
        """,
    }

    COURSES = {
        "name": "📚 Courses",
        "description": """
        **Enrollment & Lesson Access**

        - **Enrollment**: Enroll and unenroll, with per-lesson progress rows
        - **Access**: Sequentially gated lesson unlocks
        """,
    }

    ANALYTICS = {
        "name": "📊 Analytics",
        "description": """
        **Read-time Learning Analytics**

        Derived statistics recomputed from raw session, slide view and interaction records:
        - Session duration insights
        - Most viewed and struggling slides
        - Hour-of-day and weekday engagement
        - Daily time series
        """,
    }

    SUGGESTIONS = {
        "name": "🧠 Suggestions",
        "description": """
        **Adaptive & Spaced Repetition**

        - **Adaptive**: Next lesson in review or challenge mode
        - **Spaced**: Lessons due for review on fixed intervals
        - **Recommendations**: LLM-ranked course recommendations
        """,
    }

    GAMIFICATION = {
        "name": "🏆 Gamification",
        "description": """
        **XP, Achievements & Leaderboards**
        """,
    }

    CERTIFICATES = {
        "name": "🎓 Certificates",
        "description": """
        **Course Completion Certificates**

        Issued once every lesson of a course is completed
        """,
    }

    SOCIAL = {
        "name": "👥 Social",
        "description": """
        **Friends & Activity Feed**

        - **Friends**: Requests, acceptance and the friend list
        - **Activity**: Lesson completions, achievements and certificates of the caller, friends or everyone
        """,
    }

    SYSTEM = {
        "name": "🔧 System",
        "description": """
        **System Information & Health**
        """,
    }


class OpenAPIMetadata:
    """OpenAPI metadata for the application"""

    TITLE = "🎓 Learning Progress API"

    DESCRIPTION = """
    ## Learning Progress API v1.0

    Session tracking, progress ingestion, lesson gating and learning analytics
    for the e-learning platform.

    ### Authentication

    All endpoints except the system ones expect a bearer session token
    (`Authorization: Bearer <token>`).

    ### Errors

    Every error response is a JSON object with an `error` string.
    """

    VERSION = "1.0.0"

    SERVERS = [
        {"url": "http://localhost:8000", "description": "Development server"},
    ]

    LICENSE_INFO = {"name": "MIT License", "url": "https://opensource.org/licenses/MIT"}


def _error(description: str) -> dict:
    return {"model": ErrorResponse, "description": description}


COMMON_RESPONSES = {
    400: _error("Missing or malformed input"),
    401: _error("Missing, invalid or expired session token"),
    404: _error("Resource not found or not owned by the caller"),
    500: _error("Unexpected server or upstream failure"),
}
