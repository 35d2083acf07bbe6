"""
Pydantic response schemas for the learning progress API
This is the single source of truth for response contracts
"""

from pydantic import BaseModel, ConfigDict
from typing import List, Optional, Union
from datetime import datetime
from enum import Enum


class SuggestionMode(str, Enum):
    REVIEW = "review"
    CHALLENGE = "challenge"


# ============================================================================
# BASE MODELS
# ============================================================================


class BaseResponse(BaseModel):
    """Base response with common fields"""

    success: bool = True
    message: Optional[str] = None


# ============================================================================
# PROGRESS INGESTION
# ============================================================================


class SessionStartResponse(BaseModel):
    sessionId: int


class SkippedInteraction(BaseModel):
    index: int
    error: str


class InteractionBatchResponse(BaseResponse):
    recorded: int
    skipped: List[SkippedInteraction] = []


class SlideCompleteResponse(BaseResponse):
    lessonCompleted: bool = False
    learningMinutes: Optional[int] = None
    enrollmentProgress: Optional[float] = None


class SessionEndResponse(BaseResponse):
    sessionId: int
    totalDuration: int
    endedAt: datetime


# ============================================================================
# ACCESS / SUGGESTIONS
# ============================================================================


class AccessResponse(BaseModel):
    unlocked: List[int]


class LessonSuggestion(BaseModel):
    lessonId: int
    title: str
    mode: SuggestionMode


class AdaptiveResponse(BaseModel):
    suggestion: Optional[LessonSuggestion] = None


class DueLesson(BaseModel):
    lessonId: int
    title: str
    daysSince: int


class SpacedReviewResponse(BaseModel):
    due: List[DueLesson]


# ============================================================================
# GAMIFICATION
# ============================================================================


class EnrollmentResponse(BaseModel):
    id: int
    userId: int
    courseId: int
    progress: float
    enrolledAt: datetime
    progressRowsCreated: int = 0


class LeaderboardEntry(BaseModel):
    id: int
    username: Optional[str] = None
    xp: int
    level: int
    createdAt: datetime


class LeaderboardResponse(BaseModel):
    leaderboard: List[LeaderboardEntry]


class UserStatsResponse(BaseModel):
    totalXP: int
    currentLevel: int
    nextLevelXP: int
    currentStreak: int
    longestStreak: int
    totalLessons: int
    totalQuizzes: int
    perfectQuizzes: int
    totalMinutes: int
    averageDaily: int
    achievementsEarned: int
    lastActivityDate: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# ERROR MODELS
# ============================================================================


class ErrorDetail(BaseModel):
    field: Optional[str] = None
    message: str
    code: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: Optional[Union[str, List[ErrorDetail]]] = None
    status_code: int
    request_id: Optional[str] = None
    correlation_id: Optional[str] = None
