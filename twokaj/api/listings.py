"""
Listing endpoints: create, browse with filters, status lifecycle.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import desc, func
from typing import List, Optional

from twokaj.core.deps import get_db
from twokaj.db.models import Listing, User
from twokaj.schemas.entities import ListingCreate, ListingResponse, UpdateStatusRequest
from twokaj.services.sync_service import change_listing_status, serialize_listing

router = APIRouter(prefix="/listings", tags=["listings"])


@router.post("", response_model=ListingResponse, status_code=status.HTTP_201_CREATED)
def create_listing(
        request: ListingCreate,
        db: Session = Depends(get_db)
):
    """
    Create a listing with its client-assigned id.

    Direct path, not idempotent: a duplicate id is a 409.
    """
    owner = db.query(User).filter(User.id == request.user_id).first()
    if not owner:
        raise HTTPException(status_code=404, detail="User not found")

    values = request.model_dump()
    if values.get("created_at") is None:
        values.pop("created_at")
    listing = Listing(**values)

    db.add(listing)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Listing already exists")
    db.refresh(listing)

    return serialize_listing(listing)


@router.get("", response_model=List[ListingResponse])
def get_listings(
        category: Optional[str] = None,
        type: Optional[str] = None,
        location: Optional[str] = None,
        user_id: Optional[str] = None,
        status_filter: str = Query("open", alias="status", pattern="^(open|closed|all)$"),
        limit: int = Query(100, ge=1, le=500),
        offset: int = Query(0, ge=0),
        db: Session = Depends(get_db)
):
    """
    Browse listings, newest first.

    `status` defaults to "open"; the device refresh asks for "all" so closed
    listings stay visible in its cache.
    """
    query = db.query(Listing).options(joinedload(Listing.owner))

    if status_filter != "all":
        query = query.filter(Listing.status == status_filter)
    if category:
        query = query.filter(Listing.category == category)
    if type:
        query = query.filter(Listing.type == type)
    if location:
        query = query.filter(func.lower(Listing.location).contains(location.lower()))
    if user_id:
        query = query.filter(Listing.user_id == user_id)

    listings = query.order_by(desc(Listing.created_at)).offset(offset).limit(limit).all()
    return [serialize_listing(listing) for listing in listings]


@router.get("/{listing_id}", response_model=ListingResponse)
def get_listing(
        listing_id: str,
        db: Session = Depends(get_db)
):
    listing = db.query(Listing).filter(Listing.id == listing_id).first()

    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")

    return serialize_listing(listing)


@router.patch("/{listing_id}/status", response_model=ListingResponse)
def update_listing_status(
        listing_id: str,
        request: UpdateStatusRequest,
        db: Session = Depends(get_db)
):
    """
    Close a listing. Closing twice is fine; reopening a closed one is a 409.
    """
    if not change_listing_status(db, listing_id, request.status):
        db.rollback()
        if not db.query(Listing.id).filter(Listing.id == listing_id).first():
            raise HTTPException(status_code=404, detail="Listing not found")
        raise HTTPException(status_code=409, detail="Listing is closed and cannot be reopened")
    db.commit()

    listing = db.query(Listing).filter(Listing.id == listing_id).one()
    return serialize_listing(listing)
