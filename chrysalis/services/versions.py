# chrysalis/services/versions.py
"""Chapter and version lifecycle.

Every mutation below runs as a single atomic batch on the document store, so a
reader never sees two current versions, or a chapter whose ``version_count``
moved without the matching version record.

Concurrency: write batches lock the chapter row (``FOR UPDATE`` where the
backend has it) and change currency with UPDATE statements issued inside the
transaction, never by flipping rows read earlier. On SQLite the first UPDATE
takes the database write lock, so everything after it sees committed state.
Two promotions racing on one chapter settle last-writer-wins: the batch that
commits last demotes the earlier winner and decides the current version.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chrysalis.errors import InvalidOperation, NotFound
from chrysalis.models import Chapter, ChapterStatus, Version, VersionType, new_id
from chrysalis.schemas import ChapterRead, OwnerTransferResult, VersionComparison, VersionRead
from chrysalis.services.text import diff_words, words_in
from chrysalis.settings.config import settings
from chrysalis.store import DocumentStore, mark_versions_changed

logger = logging.getLogger(__name__)


# ---------- queries (shared with the change notifier) ----------

def chapters_for_owner(owner_id: str) -> Select:
    return (
        select(Chapter)
        .where(Chapter.owner_id == owner_id)
        .order_by(Chapter.chapter_number.asc(), Chapter.id.asc())
    )


def versions_for_chapter(chapter_id: str) -> Select:
    return (
        select(Version)
        .where(Version.chapter_id == chapter_id)
        .order_by(Version.version_number.desc())
    )


def current_versions(chapter_id: str) -> Select:
    return (
        select(Version)
        .where(Version.chapter_id == chapter_id, Version.is_current.is_(True))
        .order_by(Version.version_number.desc())
    )


# ---------- helpers ----------

def _coerce_type(value) -> VersionType:
    try:
        return VersionType(value)
    except ValueError:
        raise InvalidOperation(f"Unknown version type: {value!r}") from None


def _check_word_count(word_count: int) -> None:
    if word_count is None or word_count < 0:
        raise InvalidOperation("word_count must be a non-negative integer")


async def _load_chapter(db: AsyncSession, chapter_id: str, lock: bool = False) -> Chapter:
    chapter = await db.get(Chapter, chapter_id, with_for_update=lock)
    if chapter is None:
        raise NotFound(f"Chapter {chapter_id} not found")
    return chapter


async def _load_version(db: AsyncSession, version_id: str) -> Version:
    version = await db.get(Version, version_id)
    if version is None:
        raise NotFound(f"Version {version_id} not found")
    return version


async def _next_version_number(db: AsyncSession, chapter_id: str) -> int:
    latest = (
        await db.execute(select(func.max(Version.version_number)).where(Version.chapter_id == chapter_id))
    ).scalar() or 0
    return int(latest) + 1


async def _demote_others(db: AsyncSession, chapter_id: str, keep_id: Optional[str] = None) -> None:
    # every other version of the chapter, whatever this batch read before
    stmt = update(Version).where(Version.chapter_id == chapter_id)
    if keep_id is not None:
        stmt = stmt.where(Version.id != keep_id)
    await db.execute(
        stmt.values(is_current=False).execution_options(synchronize_session=False)
    )
    mark_versions_changed(db, chapter_id)


_EDITABLE_FIELDS = {"title", "status", "butterfly_analogy", "butterfly_stage"}


class VersionStore:
    def __init__(self, store: DocumentStore):
        self.store = store

    # ---------- chapters ----------

    async def create_chapter(self, owner_id: str, chapter_number: int, title: Optional[str] = None) -> str:
        """Create a chapter together with its first, current version in one batch."""
        if chapter_number is None or chapter_number < 1:
            raise InvalidOperation("chapter_number must be a positive integer")

        chapter_id, version_id = new_id(), new_id()
        async with self.store.batch() as db:
            db.add(Chapter(
                id=chapter_id,
                owner_id=owner_id,
                chapter_number=chapter_number,
                title=title or settings.DEFAULT_CHAPTER_TITLE,
                status=ChapterStatus.draft.value,
                word_count=0,
                version_count=1,
                current_version_id=version_id,
            ))
            db.add(Version(
                id=version_id,
                chapter_id=chapter_id,
                owner_id=owner_id,
                content="",
                word_count=0,
                version_number=1,
                type=VersionType.original.value,
                is_current=True,
                is_archived=False,
            ))
        logger.info("Created chapter %s (#%s) for owner %s", chapter_id, chapter_number, owner_id)
        return chapter_id

    async def get_chapter(self, chapter_id: str) -> ChapterRead:
        async with self.store.session() as db:
            chapter = await _load_chapter(db, chapter_id)
            return ChapterRead.model_validate(chapter)

    async def list_chapters(self, owner_id: str) -> List[ChapterRead]:
        async with self.store.session() as db:
            rows = (await db.execute(chapters_for_owner(owner_id))).scalars().all()
            return [ChapterRead.model_validate(r) for r in rows]

    async def _touch_chapter(self, chapter_id: str, **fields) -> None:
        async with self.store.batch() as db:
            chapter = await _load_chapter(db, chapter_id)
            for key, value in fields.items():
                setattr(chapter, key, value)
            chapter.last_edited = func.now()

    async def update_title(self, chapter_id: str, title: str) -> None:
        await self._touch_chapter(chapter_id, title=title)

    async def update_status(self, chapter_id: str, status: str) -> None:
        # the status vocabulary belongs to the caller
        if isinstance(status, ChapterStatus):
            status = status.value
        await self._touch_chapter(chapter_id, status=status)

    async def update_analogy(self, chapter_id: str, analogy: Optional[str], stage: Optional[str]) -> None:
        await self._touch_chapter(chapter_id, butterfly_analogy=analogy, butterfly_stage=stage)

    async def update_chapter(self, chapter_id: str, **fields) -> None:
        """Partial edit in one batch. Fields not passed keep their stored values."""
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise InvalidOperation(f"Chapter fields not editable: {', '.join(sorted(unknown))}")
        if isinstance(fields.get("status"), ChapterStatus):
            fields["status"] = fields["status"].value
        await self._touch_chapter(chapter_id, **fields)

    # ---------- versions: reads ----------

    async def fetch_current_version(self, chapter_id: str) -> Optional[VersionRead]:
        async with self.store.session() as db:
            row = (await db.execute(current_versions(chapter_id).limit(1))).scalars().first()
            return VersionRead.model_validate(row) if row else None

    async def get_version(self, version_id: str) -> VersionRead:
        async with self.store.session() as db:
            return VersionRead.model_validate(await _load_version(db, version_id))

    async def list_versions(self, chapter_id: str) -> List[VersionRead]:
        async with self.store.session() as db:
            rows = (await db.execute(versions_for_chapter(chapter_id))).scalars().all()
            return [VersionRead.model_validate(r) for r in rows]

    async def compare_versions(self, base_id: str, other_id: str) -> VersionComparison:
        async with self.store.session() as db:
            base = await _load_version(db, base_id)
            other = await _load_version(db, other_id)
            base_content, other_content = base.content or "", other.content or ""
            base_words, other_words = base.word_count, other.word_count

        segments = diff_words(base_content, other_content)
        return VersionComparison(
            base_id=base_id,
            other_id=other_id,
            base_word_count=base_words,
            other_word_count=other_words,
            words_added=words_in(segments, "insert"),
            words_removed=words_in(segments, "delete"),
            segments=segments,
        )

    # ---------- versions: writes ----------

    async def _insert_current_version(
        self,
        db: AsyncSession,
        chapter: Chapter,
        owner_id: str,
        content: str,
        word_count: int,
        version_type: VersionType,
    ) -> Version:
        # demote first: it takes the write lock, so the number below is read under it
        await _demote_others(db, chapter.id)

        version = Version(
            id=new_id(),
            chapter_id=chapter.id,
            owner_id=owner_id,
            content=content,
            word_count=word_count,
            version_number=await _next_version_number(db, chapter.id),
            type=version_type.value,
            is_current=True,
            is_archived=False,
        )
        db.add(version)

        chapter.version_count = Chapter.version_count + 1
        chapter.word_count = word_count
        chapter.current_version_id = version.id
        chapter.last_edited = func.now()
        return version

    async def create_version(
        self,
        chapter_id: str,
        owner_id: str,
        content: str,
        word_count: int,
        version_type=VersionType.edited,
    ) -> str:
        """Add a new version and make it current (used for enhanced rewrites)."""
        vtype = _coerce_type(version_type)
        _check_word_count(word_count)
        async with self.store.batch() as db:
            chapter = await _load_chapter(db, chapter_id, lock=True)
            version = await self._insert_current_version(db, chapter, owner_id, content, word_count, vtype)
            version_id, number = version.id, version.version_number
        logger.info("Chapter %s: created %s version v%s (%s)", chapter_id, vtype.value, number, version_id)
        return version_id

    async def save_content(
        self,
        chapter_id: str,
        owner_id: str,
        content: str,
        word_count: int,
        as_new_version: bool = False,
        version_type=VersionType.edited,
    ) -> str:
        """Save editor content.

        ``as_new_version=False`` is the autosave path: the current version is
        overwritten in place, and its number, currency and the chapter's
        ``version_count`` stay as they are. ``as_new_version=True`` behaves like
        :meth:`create_version`. Returns the id of the version that now holds
        the content.
        """
        if as_new_version:
            return await self.create_version(chapter_id, owner_id, content, word_count, version_type)

        _check_word_count(word_count)
        async with self.store.batch() as db:
            chapter = await _load_chapter(db, chapter_id, lock=True)
            current = (await db.execute(current_versions(chapter_id).limit(1))).scalars().first()
            if current is None:
                raise NotFound(f"Chapter {chapter_id} has no current version")
            current.content = content
            current.word_count = word_count
            current.updated_at = func.now()
            chapter.word_count = word_count
            chapter.last_edited = func.now()
            version_id = current.id
        logger.debug("Chapter %s: autosaved into %s (%d words)", chapter_id, version_id, word_count)
        return version_id

    async def set_current(self, chapter_id: str, version_id: str) -> None:
        async with self.store.batch() as db:
            chapter = await _load_chapter(db, chapter_id, lock=True)
            target = await db.get(Version, version_id)
            # promoting another chapter's version would break both chapters
            if target is None or target.chapter_id != chapter_id:
                raise NotFound(f"Version {version_id} does not belong to chapter {chapter_id}")

            await _demote_others(db, chapter_id, keep_id=target.id)
            promoted = await db.execute(
                update(Version)
                .where(Version.id == target.id, Version.chapter_id == chapter_id)
                .values(is_current=True)
                .execution_options(synchronize_session=False)
            )
            if promoted.rowcount == 0:
                raise NotFound(f"Version {version_id} was deleted")

            chapter.current_version_id = target.id
            chapter.word_count = target.word_count
            chapter.last_edited = func.now()
        logger.info("Chapter %s: version %s is now current", chapter_id, version_id)

    async def archive(self, version_id: str, archived: bool = True) -> None:
        # currency is independent of archiving
        async with self.store.batch() as db:
            version = await _load_version(db, version_id)
            version.is_archived = bool(archived)

    async def delete(self, version_id: str) -> None:
        async with self.store.batch() as db:
            version = await _load_version(db, version_id)
            chapter_id = version.chapter_id
            # re-checked at write time, a promotion may have landed since the read
            removed = await db.execute(
                delete(Version)
                .where(Version.id == version_id, Version.is_current.is_(False))
                .execution_options(synchronize_session=False)
            )
            if removed.rowcount == 0:
                raise InvalidOperation(
                    f"Version {version_id} is current; promote another version before deleting it"
                )
            mark_versions_changed(db, chapter_id)
        logger.info("Chapter %s: deleted version %s", chapter_id, version_id)

    # ---------- maintenance ----------

    async def transfer_owner(self, source_owner_id: str, dest_owner_id: str) -> OwnerTransferResult:
        """Move every chapter and version of one owner to another in one batch."""
        if source_owner_id == dest_owner_id:
            raise InvalidOperation("source and destination owners are the same")

        async with self.store.batch() as db:
            chapters = (await db.execute(select(Chapter).where(Chapter.owner_id == source_owner_id))).scalars().all()
            versions = (await db.execute(select(Version).where(Version.owner_id == source_owner_id))).scalars().all()
            for row in (*chapters, *versions):
                row.owner_id = dest_owner_id
        logger.info(
            "Transferred %d chapters and %d versions from %s to %s",
            len(chapters), len(versions), source_owner_id, dest_owner_id,
        )
        return OwnerTransferResult(chapters=len(chapters), versions=len(versions))


__all__ = ["VersionStore", "chapters_for_owner", "versions_for_chapter", "current_versions"]
