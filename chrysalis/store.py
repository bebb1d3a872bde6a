"""Document store over the SQLAlchemy async engine.

Two collections live here, ``chapters`` and ``versions``. Reads go through
:meth:`DocumentStore.session`; every write goes through :meth:`DocumentStore.batch`,
which is one database transaction: all of its writes become visible together
or not at all. After a batch commits, a :class:`ChangeEvent` describing what it
touched is pushed to every registered :class:`ChangeListener`.

Changes are collected from the unit of work at flush time. Bulk ``update()`` and
``delete()`` statements never reach the flush, so code issuing them inside a
batch reports what it touched with :func:`mark_versions_changed`.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Set

from sqlalchemy import event, inspect as sa_inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chrysalis.errors import InvalidOperation, StoreUnavailable
from chrysalis.models import Chapter, Version

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    owner_ids: frozenset = frozenset()            # owners whose chapter records changed
    chapter_ids: frozenset = frozenset()          # chapters whose own record changed
    version_chapter_ids: frozenset = frozenset()  # chapters whose version records changed

    def __bool__(self) -> bool:
        return bool(self.owner_ids or self.chapter_ids or self.version_chapter_ids)


def _attr_values(obj, key: str) -> Set[str]:
    # old and new values, so a reassigned record notifies both sides
    hist = sa_inspect(obj).attrs[key].history
    return {v for v in (*hist.added, *hist.unchanged, *hist.deleted) if v is not None}


_COLLECTOR_KEY = "chrysalis.changes"


@dataclass
class _ChangeCollector:
    owner_ids: Set[str] = field(default_factory=set)
    chapter_ids: Set[str] = field(default_factory=set)
    version_chapter_ids: Set[str] = field(default_factory=set)

    def after_flush(self, session, flush_context) -> None:
        # new/dirty/deleted still reflect the pre-flush state here
        for obj in (*session.new, *session.dirty, *session.deleted):
            if isinstance(obj, Chapter):
                self.chapter_ids.add(obj.id)
                self.owner_ids.update(_attr_values(obj, "owner_id"))
            elif isinstance(obj, Version):
                self.version_chapter_ids.update(_attr_values(obj, "chapter_id"))

    def attach(self, session: AsyncSession) -> None:
        session.info[_COLLECTOR_KEY] = self
        event.listen(session.sync_session, "after_flush", self.after_flush)

    def freeze(self) -> ChangeEvent:
        return ChangeEvent(
            owner_ids=frozenset(self.owner_ids),
            chapter_ids=frozenset(self.chapter_ids),
            version_chapter_ids=frozenset(self.version_chapter_ids),
        )


def mark_versions_changed(session: AsyncSession, chapter_id: str) -> None:
    """Record a bulk write to a chapter's versions on the enclosing batch."""
    collector = session.info.get(_COLLECTOR_KEY)
    if collector is None:
        raise RuntimeError("mark_versions_changed() called outside DocumentStore.batch()")
    collector.version_chapter_ids.add(chapter_id)


class ChangeListener:
    """Queue of committed change events for one consumer."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self.closed = False

    def push(self, change: ChangeEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(change)

    async def get(self) -> ChangeEvent:
        return await self._queue.get()

    def drain(self) -> List[ChangeEvent]:
        """Pop everything already queued without waiting."""
        out = []
        while not self._queue.empty():
            out.append(self._queue.get_nowait())
        return out

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._store.unlisten(self)


class DocumentStore:
    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        if session_maker is None:
            from chrysalis.database import async_session_maker
            session_maker = async_session_maker
        self._session_maker = session_maker
        self._listeners: Set[ChangeListener] = set()

    # ---------- reads ----------

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session for point reads and filtered queries. Writes here are never committed."""
        try:
            async with self._session_maker() as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"store read failed: {exc}") from exc

    # ---------- atomic batch ----------

    @asynccontextmanager
    async def batch(self) -> AsyncIterator[AsyncSession]:
        """Atomic batch: everything written on the yielded session commits together.

        An exception inside the block rolls the whole batch back and nothing is
        published. Bulk statements must be reported with
        :func:`mark_versions_changed` to reach listeners.
        """
        collector = _ChangeCollector()
        try:
            async with self._session_maker() as session:
                collector.attach(session)
                async with session.begin():
                    yield session
        except IntegrityError as exc:
            raise InvalidOperation(f"write conflicts with an existing record: {exc.orig}") from exc
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"store write failed: {exc}") from exc

        change = collector.freeze()
        if change:
            self._publish(change)

    # ---------- change listeners ----------

    def listen(self) -> ChangeListener:
        listener = ChangeListener(self)
        self._listeners.add(listener)
        logger.debug("Change listener registered (%d active)", len(self._listeners))
        return listener

    def unlisten(self, listener: ChangeListener) -> None:
        self._listeners.discard(listener)
        logger.debug("Change listener released (%d active)", len(self._listeners))

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _publish(self, change: ChangeEvent) -> None:
        logger.debug(
            "Batch committed: owners=%s chapters=%s versions-of=%s",
            sorted(change.owner_ids), sorted(change.chapter_ids), sorted(change.version_chapter_ids),
        )
        for listener in list(self._listeners):
            listener.push(change)


__all__ = ["ChangeEvent", "ChangeListener", "DocumentStore", "mark_versions_changed"]
