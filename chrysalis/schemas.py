from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime

from chrysalis.models import VersionType


# =========================
# CHAPTER SCHEMAS
# =========================
class ChapterRead(BaseModel):
    id: str
    owner_id: str
    chapter_number: int
    title: str
    status: str
    word_count: int
    version_count: int
    current_version_id: Optional[str] = None
    butterfly_analogy: Optional[str] = None
    butterfly_stage: Optional[str] = None
    last_edited: Optional[datetime] = None

    class Config:
        from_attributes = True


class ChapterCreate(BaseModel):
    owner_id: str
    chapter_number: int = Field(ge=1)
    title: Optional[str] = None


class ChapterUpdate(BaseModel):
    """Partial chapter edit; fields left out keep their stored values."""
    title: Optional[str] = None
    status: Optional[str] = None
    butterfly_analogy: Optional[str] = None
    butterfly_stage: Optional[str] = None


class ReorderChaptersRequest(BaseModel):
    order: List[str]


# =========================
# VERSION SCHEMAS
# =========================
class VersionRead(BaseModel):
    id: str
    chapter_id: str
    owner_id: str
    content: str
    word_count: int
    version_number: int
    type: VersionType
    is_current: bool
    is_archived: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContentSave(BaseModel):
    owner_id: str
    content: str
    # counted server-side when omitted
    word_count: Optional[int] = Field(default=None, ge=0)
    as_new_version: bool = False
    type: VersionType = VersionType.edited


class VersionCreate(BaseModel):
    owner_id: str
    content: str
    word_count: Optional[int] = Field(default=None, ge=0)
    type: VersionType = VersionType.edited


class ArchiveRequest(BaseModel):
    archived: bool = True


class CreatedRef(BaseModel):
    id: str


# --- Version compare ---
class DiffSegment(BaseModel):
    op: Literal["equal", "insert", "delete"]
    text: str


class VersionComparison(BaseModel):
    base_id: str
    other_id: str
    base_word_count: int
    other_word_count: int
    words_added: int = 0
    words_removed: int = 0
    segments: List[DiffSegment] = []


# --- Owner transfer ---
class OwnerTransferRequest(BaseModel):
    source_owner_id: str
    dest_owner_id: str


class OwnerTransferResult(BaseModel):
    chapters: int
    versions: int
