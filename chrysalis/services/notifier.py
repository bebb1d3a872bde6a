"""Live snapshot subscriptions over the document store.

Each subscription owns one change listener on the store and one background
task. The task delivers an initial snapshot, then waits for committed batches
that touch its query and delivers a fresh whole result set after each of them.
Events that pile up while a snapshot is being read are folded into the next
read, so a slow observer sees fewer, newer snapshots, never an older one after
a newer one.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from chrysalis.background import spawn
from chrysalis.errors import ChrysalisError
from chrysalis.models import Chapter
from chrysalis.schemas import ChapterRead, VersionRead
from chrysalis.services.versions import chapters_for_owner, versions_for_chapter
from chrysalis.store import ChangeEvent, ChangeListener, DocumentStore

logger = logging.getLogger(__name__)

Observer = Callable[[Any], Any]


class Subscription:
    def __init__(
        self,
        name: str,
        listener: ChangeListener,
        fetch: Callable[[], Awaitable[Any]],
        matches: Callable[[ChangeEvent], bool],
        observer: Observer,
        on_cancel: Optional[Callable[["Subscription"], None]] = None,
    ):
        self.name = name
        self._listener = listener
        self._fetch = fetch
        self._matches = matches
        self._observer = observer
        self._on_cancel = on_cancel
        self._cancelled = False
        self._task = None
        self.delivered = 0

    @property
    def active(self) -> bool:
        return not self._cancelled

    def start(self) -> None:
        self._task = spawn(self._run(), name=f"subscription:{self.name}", on_error=self._crashed)

    def _crashed(self, exc: BaseException) -> None:
        # a dead loop must not keep its listener or look active
        self.cancel()

    def cancel(self) -> None:
        """Stop deliveries now and release the store listener. Safe to call twice."""
        if self._cancelled:
            return
        self._cancelled = True
        self._listener.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self._on_cancel:
            self._on_cancel(self)
        logger.debug("Subscription %s cancelled after %d snapshots", self.name, self.delivered)

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        # cancellation and failures are already handled by the task's done callback
        await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self) -> None:
        await self._refresh()
        while not self._cancelled:
            change = await self._listener.get()
            relevant = self._matches(change)
            for queued in self._listener.drain():
                relevant = self._matches(queued) or relevant
            if relevant:
                await self._refresh()

    async def _refresh(self) -> None:
        try:
            snapshot = await self._fetch()
        except ChrysalisError:
            # the next matching change triggers another read
            logger.exception("Snapshot read for %s failed", self.name)
            return

        if self._cancelled:
            return
        try:
            result = self._observer(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception:  # noqa: BLE001
            logger.exception("Observer for %s failed", self.name)
        self.delivered += 1


class ChangeNotifier:
    def __init__(self, store: DocumentStore):
        self.store = store
        self._subscriptions: Set[Subscription] = set()

    @property
    def active_count(self) -> int:
        return len(self._subscriptions)

    def subscribe_chapters(self, owner_id: str, observer: Observer) -> Subscription:
        """Owner's chapters, ordered by chapter number ascending."""
        async def fetch():
            async with self.store.session() as db:
                rows = (await db.execute(chapters_for_owner(owner_id))).scalars().all()
                return [ChapterRead.model_validate(r) for r in rows]

        return self._register(f"chapters:{owner_id}", fetch, lambda c: owner_id in c.owner_ids, observer)

    def subscribe_chapter(self, chapter_id: str, observer: Observer) -> Subscription:
        """One chapter, or ``None`` while it does not exist."""
        async def fetch():
            async with self.store.session() as db:
                row = await db.get(Chapter, chapter_id)
                return ChapterRead.model_validate(row) if row else None

        return self._register(f"chapter:{chapter_id}", fetch, lambda c: chapter_id in c.chapter_ids, observer)

    def subscribe_versions(self, chapter_id: str, observer: Observer) -> Subscription:
        """Chapter's versions, ordered by version number descending."""
        async def fetch():
            async with self.store.session() as db:
                rows = (await db.execute(versions_for_chapter(chapter_id))).scalars().all()
                return [VersionRead.model_validate(r) for r in rows]

        return self._register(
            f"versions:{chapter_id}", fetch, lambda c: chapter_id in c.version_chapter_ids, observer
        )

    def _register(self, name, fetch, matches, observer) -> Subscription:
        # listen before the first read so a commit in between still triggers a refresh
        listener = self.store.listen()
        sub = Subscription(name, listener, fetch, matches, observer, on_cancel=self._subscriptions.discard)
        self._subscriptions.add(sub)
        sub.start()
        logger.debug("Subscription %s registered", name)
        return sub

    def close(self) -> None:
        for sub in list(self._subscriptions):
            sub.cancel()

    async def aclose(self) -> None:
        """Cancel every subscription and wait for their tasks to finish."""
        subs = list(self._subscriptions)
        self.close()
        await asyncio.gather(*(s.wait_closed() for s in subs))


__all__ = ["ChangeNotifier", "Subscription", "Observer"]
