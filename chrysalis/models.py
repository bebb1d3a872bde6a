import enum
import uuid

from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, func,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from .database import Base


def new_id() -> str:
    """Opaque record id, generated client-side so related records can share one batch."""
    return uuid.uuid4().hex


class ChapterStatus(str, enum.Enum):
    draft = "draft"
    in_review = "in-review"
    final = "final"


class VersionType(str, enum.Enum):
    original = "original"
    braindump = "braindump"
    jung = "jung"
    singer = "singer"
    watts = "watts"
    custom = "custom"
    edited = "edited"


# ---------------------------
# CHAPTERS
# ---------------------------
class Chapter(Base):
    __tablename__ = "chapters"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(128), nullable=False, index=True)
    # display order; unique per owner by convention only so a batch can permute it
    chapter_number = Column(Integer, nullable=False)
    title = Column(Text, nullable=False, default="Untitled Chapter")
    status = Column(String(32), nullable=False, default=ChapterStatus.draft.value)  # draft|in-review|final

    word_count = Column(Integer, nullable=False, default=0)
    version_count = Column(Integer, nullable=False, default=1)  # versions ever created, never decreases
    current_version_id = Column(String(32), nullable=True)      # cache; Version.is_current is authoritative

    butterfly_analogy = Column(Text, nullable=True)
    butterfly_stage = Column(String(64), nullable=True)

    last_edited = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    versions = relationship("Version", back_populates="chapter", passive_deletes=True)

    __table_args__ = (
        Index("ix_chapters_owner_number", "owner_id", "chapter_number"),
    )

    def __repr__(self):
        return f"<Chapter {self.id} #{self.chapter_number} {self.title!r}>"


# ---------------------------
# VERSIONS
# ---------------------------
class Version(Base):
    __tablename__ = "versions"

    id = Column(String(32), primary_key=True, default=new_id)
    chapter_id = Column(String(32), ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(String(128), nullable=False, index=True)

    content = Column(Text, nullable=False, default="")
    word_count = Column(Integer, nullable=False, default=0)

    version_number = Column(Integer, nullable=False)  # monotonic per chapter
    type = Column(String(32), nullable=False, default=VersionType.edited.value)
    is_current = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)  # in-place edits only

    chapter = relationship("Chapter", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("chapter_id", "version_number", name="uq_version_chapter_number"),
        Index("ix_versions_chapter_current", "chapter_id", "is_current"),
    )

    def __repr__(self):
        return f"<Version {self.id} chapter={self.chapter_id} v{self.version_number} current={self.is_current}>"
