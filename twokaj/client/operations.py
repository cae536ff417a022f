# Queued operations

"""
Operation queue entries.

An operation is a tagged union keyed by `kind`. The payload is validated
against the schema of its kind when the operation is created, so nothing
malformed ever reaches the queue.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ValidationError

from twokaj.core.errors import OperationValidationError
from twokaj.schemas.entities import (
    GalleryItemCreate, ListingCreate, ListingStatusChange, MessageCreate, UserCreate,
)

COLLECTIONS = ("users", "listings", "messages", "gallery")


class OperationKind(str, Enum):
    CREATE_USER = "CreateUser"
    CREATE_AD = "CreateAd"
    SEND_MESSAGE = "SendMessage"
    UPDATE_AD_STATUS = "UpdateAdStatus"
    CREATE_GALLERY_ITEM = "CreateGalleryItem"


# Payload schema per kind
PAYLOAD_SCHEMAS: Dict[OperationKind, type] = {
    OperationKind.CREATE_USER: UserCreate,
    OperationKind.CREATE_AD: ListingCreate,
    OperationKind.SEND_MESSAGE: MessageCreate,
    OperationKind.UPDATE_AD_STATUS: ListingStatusChange,
    OperationKind.CREATE_GALLERY_ITEM: GalleryItemCreate,
}

# /sync-batch group each kind is delivered in
BATCH_GROUPS: Dict[OperationKind, str] = {
    OperationKind.CREATE_USER: "users",
    OperationKind.CREATE_AD: "listings",
    OperationKind.SEND_MESSAGE: "messages",
    OperationKind.UPDATE_AD_STATUS: "listing_status",
    OperationKind.CREATE_GALLERY_ITEM: "gallery",
}

# Local cache collection each kind writes to
CACHE_COLLECTIONS: Dict[OperationKind, str] = {
    OperationKind.CREATE_USER: "users",
    OperationKind.CREATE_AD: "listings",
    OperationKind.SEND_MESSAGE: "messages",
    OperationKind.UPDATE_AD_STATUS: "listings",
    OperationKind.CREATE_GALLERY_ITEM: "gallery",
}


def new_id() -> str:
    """Globally unique entity/operation id, assigned on the device."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # naive UTC; SQLite keeps no tz information
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Operation(BaseModel):
    """A not-yet-acknowledged write."""
    id: str
    kind: OperationKind
    payload: dict
    enqueued_at: datetime
    attempt_count: int = 0
    seq: Optional[int] = None
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @classmethod
    def new(cls, kind, payload: dict) -> "Operation":
        """
        Build an operation, validating `payload` against the schema for `kind`.

        Raises:
            OperationValidationError: unknown kind or payload not matching it
        """
        try:
            kind = OperationKind(kind)
        except ValueError:
            raise OperationValidationError(f"Unknown operation kind: {kind}")

        try:
            model = PAYLOAD_SCHEMAS[kind].model_validate(payload)
        except ValidationError as e:
            raise OperationValidationError(f"Invalid {kind.value} payload: {e}") from e

        return cls(
            id=new_id(),
            kind=kind,
            payload=model.model_dump(mode="json", exclude_none=True),
            enqueued_at=utcnow(),
        )

    @property
    def entity_id(self) -> str:
        return self.payload["id"]

    @property
    def group(self) -> str:
        return BATCH_GROUPS[self.kind]

    @property
    def collection(self) -> str:
        return CACHE_COLLECTIONS[self.kind]

    def to_batch(self) -> dict:
        """Single-item /sync-batch body for this operation."""
        return {self.group: [self.payload]}


class DeadLetter(BaseModel):
    """An operation that will not be retried, kept so the user can see it."""
    id: str
    kind: OperationKind
    payload: dict
    enqueued_at: datetime
    attempt_count: int
    failed_at: datetime
    reason: str

    @property
    def entity_id(self) -> str:
        return self.payload["id"]
