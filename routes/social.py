"""
Social Router
Friend requests, friendships and the activity feed
"""

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from db import get_db
from models import FriendRequest, Friendship, User
from schemas.validation import FriendRequestSchema, FriendResponseSchema
from utils.auth_dependencies import get_current_user
from utils.error_handling import handle_database_error, log_operation_success, validate_resource_exists
from utils.social import (
    DEFAULT_FEED_LIMIT,
    MAX_FEED_LIMIT,
    FeedScope,
    FriendRequestStatus,
    NoPendingRequestError,
    activity_feed,
    respond_to_friend_request,
    send_friend_request,
    serialize_activity,
    serialize_user_summary,
)

router = APIRouter()


def _user_by_subject(db: Session, subject: str) -> User:
    user = db.query(User).filter(User.external_id == subject).first()
    validate_resource_exists(user, "User", subject)
    return user


def _serialize_request(request: FriendRequest) -> dict:
    return {
        "id": request.id,
        "status": request.status,
        "createdAt": request.created_at.isoformat(),
        "sender": serialize_user_summary(request.sender),
        "receiver": serialize_user_summary(request.receiver),
    }


# ============================================================================
# FRIENDS
# ============================================================================


@router.get("/friends", summary="List Friends")
def list_friends(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Friends of the caller and the requests still waiting for the caller's answer"""
    friendships = (
        db.query(Friendship)
        .options(joinedload(Friendship.user), joinedload(Friendship.friend))
        .filter(or_(Friendship.user_id == current_user.id, Friendship.friend_id == current_user.id))
        .order_by(Friendship.created_at.asc(), Friendship.id.asc())
        .all()
    )
    pending = (
        db.query(FriendRequest)
        .options(joinedload(FriendRequest.sender), joinedload(FriendRequest.receiver))
        .filter(
            FriendRequest.receiver_id == current_user.id,
            FriendRequest.status == FriendRequestStatus.PENDING.value,
        )
        .order_by(FriendRequest.created_at.desc(), FriendRequest.id.desc())
        .all()
    )

    return {
        "friends": [
            serialize_user_summary(f.friend if f.user_id == current_user.id else f.user) for f in friendships
        ],
        "requests": [_serialize_request(r) for r in pending],
    }


@router.post(
    "/friends",
    summary="Send Friend Request",
    responses={400: {"description": "Cannot befriend yourself"}, 404: {"description": "User not found"}},
)
def create_friend_request(
    payload: FriendRequestSchema = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    receiver = _user_by_subject(db, payload.targetSubject)
    if receiver.id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot send a friend request to yourself")

    try:
        request = send_friend_request(db, current_user, receiver)
    except SQLAlchemyError as e:
        db.rollback()
        handle_database_error(e, "send friend request")

    log_operation_success("friend request", user_id=current_user.id, extra={"receiver_id": receiver.id})
    return {"request": _serialize_request(request)}


@router.patch(
    "/friends",
    summary="Answer Friend Request",
    responses={404: {"description": "No pending request"}, 409: {"description": "Already friends"}},
)
def answer_friend_request(
    payload: FriendResponseSchema = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Accept or reject a pending request; accepting creates the friendship"""
    sender = _user_by_subject(db, payload.senderSubject)
    try:
        respond_to_friend_request(db, current_user, sender, accept=payload.action == "accept")
    except NoPendingRequestError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Friend request not found")
    except SQLAlchemyError as e:
        db.rollback()
        handle_database_error(e, "answer friend request")

    return {"ok": True}


# ============================================================================
# ACTIVITY FEED
# ============================================================================


@router.get("/activity", summary="Activity Feed")
def get_activity_feed(
    scope: FeedScope = Query(FeedScope.FRIENDS, description="friends, me or global"),
    limit: int = Query(DEFAULT_FEED_LIMIT, ge=1, le=MAX_FEED_LIMIT),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Newest activities first within the requested scope"""
    return {"items": [serialize_activity(a) for a in activity_feed(db, current_user.id, scope, limit)]}
