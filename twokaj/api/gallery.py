# /gallery endpoints
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import desc
from typing import List

from twokaj.core.deps import get_db
from twokaj.db.models import GalleryItem
from twokaj.schemas.entities import GalleryItemCreate, GalleryItemResponse

router = APIRouter(prefix="/gallery", tags=["gallery"])


@router.post("", response_model=GalleryItemResponse, status_code=status.HTTP_201_CREATED)
def create_gallery_item(
        request: GalleryItemCreate,
        db: Session = Depends(get_db)
):
    values = request.model_dump()
    if values.get("created_at") is None:
        values.pop("created_at")
    item = GalleryItem(**values)

    db.add(item)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Gallery item already exists")
    db.refresh(item)

    return item


@router.get("", response_model=List[GalleryItemResponse])
def get_gallery(db: Session = Depends(get_db)):
    return db.query(GalleryItem).order_by(desc(GalleryItem.created_at)).all()
