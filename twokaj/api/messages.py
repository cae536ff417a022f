"""
Message endpoints: conversations between users about a listing.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import or_
from typing import List

from twokaj.core.deps import get_db
from twokaj.db.models import Listing, Message, User
from twokaj.schemas.entities import MessageCreate, MessageResponse
from twokaj.services.sync_service import serialize_message

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def create_message(
        request: MessageCreate,
        db: Session = Depends(get_db)
):
    """
    Send a message. The listing and both users must already exist.
    """
    if not db.query(Listing.id).filter(Listing.id == request.ad_id).first():
        raise HTTPException(status_code=404, detail="Listing not found")

    user_ids = {request.sender_id, request.receiver_id}
    found = db.query(User.id).filter(User.id.in_(user_ids)).count()
    if found != len(user_ids):
        raise HTTPException(status_code=404, detail="Sender or receiver not found")

    values = request.model_dump()
    if values.get("created_at") is None:
        values.pop("created_at")
    message = Message(**values)

    db.add(message)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Message already exists")
    db.refresh(message)

    return serialize_message(message)


@router.get("", response_model=List[MessageResponse])
def get_messages(
        user_id: str,
        db: Session = Depends(get_db)
):
    """
    Messages sent or received by a user, oldest first.
    """
    messages = db.query(Message).filter(
        or_(Message.sender_id == user_id, Message.receiver_id == user_id)
    ).order_by(Message.created_at).all()

    return [serialize_message(m) for m in messages]
