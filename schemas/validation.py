from pydantic import BaseModel, Field, field_validator
from typing import Any, Optional, List, Dict, Literal


ProgressEventType = Literal["session_start", "slide_view", "interaction", "slide_complete", "session_end"]


class ProgressEventEnvelope(BaseModel):
    """Outer shape of POST /progress; data is validated per event type"""

    type: ProgressEventType = Field(..., description="Session lifecycle event type")
    data: Dict[str, Any] = Field(default_factory=dict, description="Type-specific payload")


class SessionStartSchema(BaseModel):
    """Schema for opening a learning session"""

    courseId: int = Field(..., gt=0, description="Course ID")
    totalSlides: int = Field(..., ge=0, description="Number of slides in the course view")
    deviceInfo: Optional[Dict[str, Any]] = Field(None, description="Client device description")


class SlideViewSchema(BaseModel):
    """Schema for a slide view delta"""

    sessionId: int = Field(..., gt=0, description="Session ID")
    slideId: str = Field(..., min_length=1, max_length=255, description="Slide identifier")
    moduleId: Optional[str] = Field(None, max_length=255)
    subModuleId: Optional[str] = Field(None, max_length=255)
    lessonId: Optional[int] = Field(None, gt=0, description="Lesson whose progress row is touched")
    timeSpent: int = Field(0, ge=0, description="Seconds spent since the previous report (delta)")
    scrollDepth: int = Field(0, ge=0, le=100, description="Scroll depth percentage")
    completed: bool = Field(False)

    @field_validator("slideId")
    @classmethod
    def validate_slide_id(cls, v):
        if not v.strip():
            raise ValueError("Slide ID cannot be empty")
        return v.strip()


class InteractionSchema(BaseModel):
    """Schema for a single interaction event"""

    eventType: str = Field(..., min_length=1, max_length=50)
    eventName: str = Field(..., min_length=1, max_length=100)
    eventData: Optional[Dict[str, Any]] = Field(None)
    slideId: Optional[str] = Field(None, max_length=255)


class InteractionBatchSchema(BaseModel):
    """Schema for the interaction envelope; entries are validated one by one"""

    sessionId: int = Field(..., gt=0, description="Session ID")
    events: List[Any] = Field(default_factory=list, max_length=1000, description="Interaction entries")


class SlideCompleteSchema(BaseModel):
    """Schema for marking a slide (and optionally its lesson) complete"""

    sessionId: int = Field(..., gt=0, description="Session ID")
    slideId: str = Field(..., min_length=1, max_length=255)
    moduleId: Optional[str] = Field(None, max_length=255)
    lessonId: Optional[int] = Field(None, gt=0)
    timeSpent: int = Field(0, ge=0, description="Seconds spent since the previous report (delta)")
    achievementId: Optional[int] = Field(None, gt=0, description="Achievement unlocked by this completion")


class SessionEndSchema(BaseModel):
    """Schema for closing a session; durations are computed server-side"""

    sessionId: int = Field(..., gt=0, description="Session ID")
    completedSlides: int = Field(0, ge=0)
    progressSnapshot: Optional[Dict[str, Any]] = Field(None)


class AchievementAwardSchema(BaseModel):
    """Schema for awarding an achievement to the caller"""

    achievementId: int = Field(..., gt=0, description="Achievement ID")


class QuizAttemptSchema(BaseModel):
    """Schema for quiz attempt submission"""

    lessonId: int = Field(..., gt=0, description="Lesson ID")
    answers: Dict[str, Any] = Field(..., description="Per-question answers")
    score: float = Field(..., ge=0, le=100, description="Score percentage")


class CertificateRequestSchema(BaseModel):
    """Schema for requesting a course completion certificate"""

    courseId: int = Field(..., gt=0, description="Completed course ID")


class FriendRequestSchema(BaseModel):
    """Schema for sending a friend request"""

    targetSubject: str = Field(..., min_length=1, max_length=255, description="Identity provider subject of the receiver")


class FriendResponseSchema(BaseModel):
    """Schema for answering a pending friend request"""

    senderSubject: str = Field(..., min_length=1, max_length=255, description="Identity provider subject of the sender")
    action: Literal["accept", "reject"]
