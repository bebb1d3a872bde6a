# chrysalis/services/ordering.py
from __future__ import annotations

import logging
from typing import Iterable, List

from sqlalchemy import func, select

from chrysalis.errors import NotFound
from chrysalis.models import Chapter
from chrysalis.store import DocumentStore

logger = logging.getLogger(__name__)


def _chapter_ids(chapters: Iterable) -> List[str]:
    # accept ids or anything carrying an ``id`` (ChapterRead, Chapter rows)
    return [c if isinstance(c, str) else c.id for c in chapters]


class ChapterOrderer:
    """Renumbers chapters in one batch so no reader sees two chapters at the same position.

    The caller passes the complete ordered sequence; chapters left out are not
    touched, and nothing checks that the result is consistent across the
    owner's whole chapter set.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    async def reorder(self, chapters: Iterable) -> None:
        ids = _chapter_ids(chapters)
        if not ids:
            return

        async with self.store.batch() as db:
            rows = (await db.execute(select(Chapter).where(Chapter.id.in_(ids)))).scalars().all()
            by_id = {r.id: r for r in rows}
            missing = [cid for cid in ids if cid not in by_id]
            if missing:
                raise NotFound(f"Chapters not found: {', '.join(missing)}")
            for idx, cid in enumerate(ids):
                row = by_id[cid]
                row.chapter_number = idx + 1
                row.last_edited = func.now()
        logger.info("Reordered %d chapters", len(ids))


__all__ = ["ChapterOrderer"]
