# Request/response models shared by the API routes and the device client

"""
Entity DTOs.

The same create models validate direct CRUD requests, /sync-batch items and
queued operation payloads on the device, so an operation that passes
validation at enqueue time is one the server accepts.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ListingType = Literal["offer", "request"]
ListingStatus = Literal["open", "closed"]
MessageType = Literal["normal", "contact", "chat", "deal", "refuse", "deal_accepted", "deal_rejected"]

EntityId = Annotated[str, Field(min_length=1, max_length=64, description="Client-assigned unique id")]


# ============================================================================
# USERS
# ============================================================================

class UserCreate(BaseModel):
    id: EntityId
    name: Optional[str] = None
    pseudo: str = Field(..., min_length=1)
    email: Optional[str] = None
    password: str = Field(..., min_length=1)
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    categories: List[str] = []
    profile_photo: Optional[str] = None
    created_at: Optional[datetime] = None


class UserResponse(BaseModel):
    id: str
    name: Optional[str] = None
    pseudo: str
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    categories: List[str] = []
    profile_photo: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoginRequest(BaseModel):
    """Login with either pseudo or email."""
    pseudo: Optional[str] = None
    email: Optional[str] = None
    password: str


class AuthTokensResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse


class RefreshTokenRequest(BaseModel):
    refresh_token: str


# ============================================================================
# LISTINGS
# ============================================================================

class ListingCreate(BaseModel):
    id: EntityId
    user_id: str = Field(..., min_length=1)
    type: ListingType
    category: str
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    location: Optional[str] = None
    exchange_category: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_all_year: bool = False
    availability: Dict[str, Any] = {}
    photo: Optional[str] = None
    status: ListingStatus = "open"
    created_at: Optional[datetime] = None


class ListingResponse(BaseModel):
    id: str
    user_id: str
    pseudo: Optional[str] = None
    user_city: Optional[str] = None
    type: str
    category: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    exchange_category: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_all_year: bool = False
    availability: Dict[str, Any] = {}
    photo: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ListingStatusChange(BaseModel):
    id: EntityId
    status: ListingStatus


class UpdateStatusRequest(BaseModel):
    status: ListingStatus


# ============================================================================
# MESSAGES
# ============================================================================

class MessageCreate(BaseModel):
    id: EntityId
    ad_id: str = Field(..., min_length=1)
    sender_id: str = Field(..., min_length=1)
    receiver_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    type: MessageType = "normal"
    created_at: Optional[datetime] = None


class MessageResponse(BaseModel):
    id: str
    ad_id: str
    sender_id: str
    receiver_id: str
    content: str
    type: str
    created_at: Optional[datetime] = None
    sender_pseudo: Optional[str] = None
    ad_title: Optional[str] = None

    class Config:
        from_attributes = True


# ============================================================================
# GALLERY
# ============================================================================

class GalleryItemCreate(BaseModel):
    id: EntityId
    photo_url: str = Field(..., min_length=1)
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class GalleryItemResponse(BaseModel):
    id: str
    photo_url: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
