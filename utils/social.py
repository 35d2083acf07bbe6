"""
Friends and the activity feed

Activity rows are written inside the caller's transaction by the code that
produces the event (lesson completion, achievement award, certificate issue)
and are never updated afterwards.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from models import Activity, FriendRequest, Friendship, User
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("social")

DEFAULT_FEED_LIMIT = 50
MAX_FEED_LIMIT = 100


class ActivityType(str, Enum):
    LESSON_COMPLETED = "LESSON_COMPLETED"
    ACHIEVEMENT_EARNED = "ACHIEVEMENT_EARNED"
    COURSE_COMPLETED = "COURSE_COMPLETED"


class FeedScope(str, Enum):
    FRIENDS = "friends"
    ME = "me"
    GLOBAL = "global"


class FriendRequestStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class NoPendingRequestError(Exception):
    pass


def record_activity(
    db: Session,
    user_id: int,
    activity_type: ActivityType,
    description: str,
    lesson_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Activity:
    """Queue an activity row; the caller commits"""
    activity = Activity(
        user_id=user_id,
        type=activity_type.value,
        description=description,
        lesson_id=lesson_id,
        details=details or {},
    )
    db.add(activity)
    return activity


# ===============================================================================
# Friends
# ===============================================================================


def friend_ids(db: Session, user_id: int) -> List[int]:
    """Ids of everyone linked to ``user_id`` by a friendship, in either direction"""
    rows = db.query(Friendship).filter(or_(Friendship.user_id == user_id, Friendship.friend_id == user_id)).all()
    return [row.friend_id if row.user_id == user_id else row.user_id for row in rows]


def send_friend_request(db: Session, sender: User, receiver: User) -> FriendRequest:
    """Create the request, or reopen an earlier one between the same pair as pending"""
    request = db.query(FriendRequest).filter_by(sender_id=sender.id, receiver_id=receiver.id).first()
    if request is None:
        request = FriendRequest(sender_id=sender.id, receiver_id=receiver.id)
        db.add(request)
    request.status = FriendRequestStatus.PENDING.value
    db.commit()
    db.refresh(request)
    return request


def respond_to_friend_request(db: Session, receiver: User, sender: User, accept: bool) -> FriendRequest:
    """
    Accept or reject a pending request from ``sender``.

    Accepting marks the request and creates the friendship in one commit.

    Raises:
        NoPendingRequestError: no pending request from ``sender`` to ``receiver``
    """
    request = db.query(FriendRequest).filter_by(sender_id=sender.id, receiver_id=receiver.id).first()
    if request is None or request.status != FriendRequestStatus.PENDING.value:
        raise NoPendingRequestError()

    if accept:
        request.status = FriendRequestStatus.ACCEPTED.value
        db.add(Friendship(user_id=receiver.id, friend_id=sender.id))
    else:
        request.status = FriendRequestStatus.REJECTED.value
    db.commit()

    logger.info(
        "Friend request answered",
        category=LogCategory.BUSINESS,
        user_id=receiver.id,
        extra={"sender_id": sender.id, "status": request.status},
    )
    return request


# ===============================================================================
# Activity feed
# ===============================================================================


def activity_feed(db: Session, user_id: int, scope: FeedScope, limit: int = DEFAULT_FEED_LIMIT) -> List[Activity]:
    """Newest activities first: the caller's own, the caller's and friends', or everyone's"""
    query = db.query(Activity).options(joinedload(Activity.user), joinedload(Activity.lesson))
    if scope == FeedScope.ME:
        query = query.filter(Activity.user_id == user_id)
    elif scope == FeedScope.FRIENDS:
        query = query.filter(Activity.user_id.in_([user_id, *friend_ids(db, user_id)]))
    return query.order_by(Activity.created_at.desc(), Activity.id.desc()).limit(limit).all()


def serialize_user_summary(user: User) -> Dict[str, Any]:
    return {"id": user.id, "username": user.username, "level": user.level}


def serialize_activity(activity: Activity) -> Dict[str, Any]:
    return {
        "id": activity.id,
        "type": activity.type,
        "description": activity.description,
        "metadata": activity.details or {},
        "createdAt": activity.created_at.isoformat(),
        "user": serialize_user_summary(activity.user),
        "lesson": {"id": activity.lesson.id, "title": activity.lesson.title} if activity.lesson else None,
    }
