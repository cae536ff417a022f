# Reconciliation of deferred writes

"""
Batch reconciliation for operations queued on offline devices.

Groups are applied in dependency order. Each group runs inside its own
SAVEPOINT: either every item of the group is applied or none is. Every item
is an upsert on its client-assigned id, so delivering the same batch twice
leaves the store unchanged the second time.
"""
import logging
from typing import Callable, Dict, List

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from twokaj.core.errors import ReconciliationError
from twokaj.db.models import LISTING_CLOSED, LISTING_OPEN, GalleryItem, Listing, Message, User
from twokaj.schemas.entities import (
    GalleryItemCreate, GalleryItemResponse, ListingCreate, ListingResponse,
    ListingStatusChange, MessageCreate, MessageResponse, UserCreate, UserResponse,
)
from twokaj.services.upsert import (
    existing_ids, upsert_gallery_item, upsert_listing, upsert_message, upsert_user,
)

logger = logging.getLogger(__name__)

GROUP_ORDER = ("users", "listings", "listing_status", "messages", "gallery")


def process_sync_batch(batch, db: Session) -> dict:
    """
    Apply a SyncBatchRequest to the authoritative store.

    Returns:
        {
            "success": bool,
            "applied": {"listings": ["id-1", ...], ...},
            "failed": [{"group": ..., "id": ..., "error": ..., "retryable": bool}],
            "deferred": {"messages": ["id-9"], ...},
            "entities": {"listings": [{...}], ...}
        }
    """
    applied: Dict[str, List[str]] = {}
    deferred: Dict[str, List[str]] = {}
    entities: Dict[str, List[dict]] = {}
    failed: List[dict] = []

    for group in GROUP_ORDER:
        items = getattr(batch, group) or []
        if not items:
            continue

        apply_item = APPLIERS[group]
        ok_ids = []
        group_failures = []

        group_tx = db.begin_nested()
        for item in items:
            try:
                with db.begin_nested():
                    apply_item(item, db)
                ok_ids.append(item.id)
            except ReconciliationError as e:
                group_failures.append({
                    "group": group, "id": item.id,
                    "error": str(e), "retryable": e.retryable,
                })
            except IntegrityError as e:
                group_failures.append({
                    "group": group, "id": item.id,
                    "error": f"constraint violation: {e.orig}", "retryable": False,
                })

        if group_failures:
            group_tx.rollback()
            failed.extend(group_failures)
            if ok_ids:
                deferred[group] = ok_ids
            logger.warning(
                "Sync batch group %s rolled back: %d failed, %d deferred",
                group, len(group_failures), len(ok_ids),
            )
            continue

        group_tx.commit()
        applied[group] = ok_ids
        entities[group] = _load_entities(group, ok_ids, db)

    db.commit()

    logger.info(
        "Sync batch applied %s; %d failed",
        {g: len(ids) for g, ids in applied.items()}, len(failed),
    )
    return {
        "success": not failed,
        "applied": applied,
        "failed": failed,
        "deferred": deferred,
        "entities": entities,
    }


def _apply_user(item: UserCreate, db: Session):
    upsert_user(db, item.model_dump())


def _apply_listing(item: ListingCreate, db: Session):
    if not existing_ids(db, User, [item.user_id]):
        raise ReconciliationError(f"missing reference: user {item.user_id}", retryable=True)
    upsert_listing(db, item.model_dump())


def change_listing_status(db: Session, listing_id: str, new_status: str) -> bool:
    """
    Move a listing forward in one conditional UPDATE; closed never goes back to open.

    Returns False when no row changed: the listing is missing, or it is
    closed and `new_status` would reopen it.
    """
    stmt = update(Listing).where(Listing.id == listing_id)
    if new_status != LISTING_CLOSED:
        stmt = stmt.where(Listing.status == LISTING_OPEN)
    stmt = stmt.values(status=new_status, updated_at=func.now())
    result = db.execute(stmt.execution_options(synchronize_session=False))
    return bool(result.rowcount)


def _apply_listing_status(item: ListingStatusChange, db: Session):
    if change_listing_status(db, item.id, item.status):
        return

    if not existing_ids(db, Listing, [item.id]):
        raise ReconciliationError(f"missing reference: listing {item.id}", retryable=True)
    raise ReconciliationError(f"listing {item.id} is closed and cannot be reopened")


def _apply_message(item: MessageCreate, db: Session):
    if not existing_ids(db, Listing, [item.ad_id]):
        raise ReconciliationError(f"missing reference: listing {item.ad_id}", retryable=True)
    users = existing_ids(db, User, [item.sender_id, item.receiver_id])
    for user_id in (item.sender_id, item.receiver_id):
        if user_id not in users:
            raise ReconciliationError(f"missing reference: user {user_id}", retryable=True)
    upsert_message(db, item.model_dump())


def _apply_gallery_item(item: GalleryItemCreate, db: Session):
    upsert_gallery_item(db, item.model_dump())


APPLIERS: Dict[str, Callable] = {
    "users": _apply_user,
    "listings": _apply_listing,
    "listing_status": _apply_listing_status,
    "messages": _apply_message,
    "gallery": _apply_gallery_item,
}


def serialize_listing(listing: Listing) -> dict:
    data = ListingResponse.model_validate(listing)
    if listing.owner is not None:
        data.pseudo = listing.owner.pseudo
        data.user_city = listing.owner.city
    return data.model_dump(mode="json")


def serialize_message(message: Message) -> dict:
    data = MessageResponse.model_validate(message)
    data.sender_pseudo = message.sender.pseudo if message.sender else None
    data.ad_title = message.listing.title if message.listing else None
    return data.model_dump(mode="json")


def _load_entities(group: str, ids: List[str], db: Session) -> List[dict]:
    """Authoritative copies of the rows a group just wrote."""
    db.expire_all()
    if group == "users":
        rows = db.query(User).filter(User.id.in_(ids)).all()
        return [UserResponse.model_validate(u).model_dump(mode="json") for u in rows]
    if group in ("listings", "listing_status"):
        rows = db.query(Listing).filter(Listing.id.in_(ids)).all()
        return [serialize_listing(listing) for listing in rows]
    if group == "messages":
        rows = db.query(Message).filter(Message.id.in_(ids)).all()
        return [serialize_message(m) for m in rows]
    rows = db.query(GalleryItem).filter(GalleryItem.id.in_(ids)).all()
    return [GalleryItemResponse.model_validate(g).model_dump(mode="json") for g in rows]
