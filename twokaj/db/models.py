# All SQLAlchemy models

"""
Authoritative store schema for the twokaj marketplace.

Every primary key is a client-assigned string id: entities created offline
keep the same key on every delivery attempt, so replaying a create is an
upsert on that key instead of a duplicate row.
"""

from sqlalchemy import (
    Column, String, Boolean, DateTime, Text, ForeignKey, JSON, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from twokaj.db.base import Base

LISTING_OPEN = "open"
LISTING_CLOSED = "closed"


# ============================================================================
# USER MODEL
# ============================================================================

class User(Base):
    """
    Marketplace member. Password is an opaque string compared for equality.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)  # client-generated
    name = Column(String, nullable=True)
    pseudo = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=True)
    password = Column(String, nullable=False)

    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    categories = Column(JSON, default=list)  # categories the user barters in
    profile_photo = Column(Text, nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    listings = relationship("Listing", back_populates="owner")


# ============================================================================
# LISTING MODEL
# ============================================================================

class Listing(Base):
    """
    An offer or request ("ad"). Status lifecycle: open -> closed, one way.
    """
    __tablename__ = "listings"

    id = Column(String, primary_key=True, index=True)  # client-generated
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Content
    type = Column(String(20), nullable=False)  # "offer" or "request"
    category = Column(String(100), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    exchange_category = Column(String(100), nullable=True)

    # Availability
    start_date = Column(String, nullable=True)
    end_date = Column(String, nullable=True)
    is_all_year = Column(Boolean, default=False, nullable=False)
    availability = Column(JSON, default=dict)
    photo = Column(Text, nullable=True)

    status = Column(String(20), default=LISTING_OPEN, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    owner = relationship("User", back_populates="listings")
    messages = relationship("Message", back_populates="listing", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_listings_status_created', 'status', 'created_at'),
        Index('idx_listings_category', 'category'),
    )


# ============================================================================
# MESSAGE MODEL
# ============================================================================

class Message(Base):
    """
    A message about a listing between two users (contact, chat, deal...).
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True, index=True)  # client-generated
    ad_id = Column(String, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    receiver_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    content = Column(Text, nullable=False)
    type = Column(String(20), default="normal", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    # Relationships
    listing = relationship("Listing", back_populates="messages")
    sender = relationship("User", foreign_keys=[sender_id])

    __table_args__ = (
        Index('idx_messages_sender_created', 'sender_id', 'created_at'),
        Index('idx_messages_receiver_created', 'receiver_id', 'created_at'),
    )


# ============================================================================
# GALLERY MODEL
# ============================================================================

class GalleryItem(Base):
    """
    Community photo gallery entry.
    """
    __tablename__ = "gallery"

    id = Column(String, primary_key=True, index=True)  # client-generated
    photo_url = Column(Text, nullable=False)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
