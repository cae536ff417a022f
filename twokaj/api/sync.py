"""
Reconciliation endpoint for writes deferred on offline devices.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Dict, List
from pydantic import BaseModel

from twokaj.core.deps import get_db
from twokaj.schemas.entities import (
    GalleryItemCreate, ListingCreate, ListingStatusChange, MessageCreate, UserCreate,
)
from twokaj.services.sync_service import process_sync_batch

router = APIRouter(tags=["sync"])


class SyncBatchRequest(BaseModel):
    """Deferred operations grouped by entity kind, each with its client id"""
    users: List[UserCreate] = []
    listings: List[ListingCreate] = []
    listing_status: List[ListingStatusChange] = []
    messages: List[MessageCreate] = []
    gallery: List[GalleryItemCreate] = []


class SyncFailure(BaseModel):
    group: str
    id: str
    error: str
    retryable: bool


class SyncBatchResponse(BaseModel):
    """Only ids listed under `applied` are acknowledged"""
    success: bool
    applied: Dict[str, List[str]] = {}
    failed: List[SyncFailure] = []
    deferred: Dict[str, List[str]] = {}
    entities: Dict[str, List[dict]] = {}


@router.post("/sync-batch", response_model=SyncBatchResponse)
def sync_batch(
        request: SyncBatchRequest,
        db: Session = Depends(get_db)
):
    """
    Apply a batch of deferred operations with upsert semantics.

    Replaying a batch that was already applied changes nothing and still
    reports success, so a device that lost the acknowledgement can resend.
    Groups are applied users -> listings -> listing_status -> messages ->
    gallery; a group is rolled back as a whole when one of its items fails.
    """
    result = process_sync_batch(request, db)
    return SyncBatchResponse(**result)
