from __future__ import annotations

import asyncio
import json
import logging
from typing import Callable, List

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse

from chrysalis.errors import NotFound
from chrysalis.routes_shared import get_notifier, get_orderer, get_versions
from chrysalis.schemas import (
    ArchiveRequest,
    ChapterCreate,
    ChapterRead,
    ChapterUpdate,
    ContentSave,
    CreatedRef,
    OwnerTransferRequest,
    OwnerTransferResult,
    ReorderChaptersRequest,
    VersionComparison,
    VersionCreate,
    VersionRead,
)
from chrysalis.services.notifier import ChangeNotifier, Subscription
from chrysalis.services.ordering import ChapterOrderer
from chrysalis.services.text import count_words
from chrysalis.services.versions import VersionStore
from chrysalis.settings.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ---------- live streams (SSE) ----------

def _keep_latest(queue: asyncio.Queue) -> Callable:
    """Observer that leaves only the newest snapshot queued for a slow client."""
    def _offer(snapshot) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(snapshot)

    return _offer


def _event_stream(request: Request, subscribe: Callable[[Callable], Subscription]) -> StreamingResponse:
    # snapshots carry the whole result set, an older one is never worth sending
    queue: asyncio.Queue = asyncio.Queue(maxsize=1)
    sub = subscribe(_keep_latest(queue))
    logger.debug("SSE stream opened for %s", sub.name)

    async def _gen():
        try:
            while True:
                try:
                    snapshot = await asyncio.wait_for(queue.get(), timeout=settings.STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        break
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {json.dumps(jsonable_encoder(snapshot))}\n\n"
        finally:
            sub.cancel()

    return StreamingResponse(_gen(), media_type="text/event-stream")


@router.get("/chapters/stream")
async def stream_chapters(
    request: Request,
    owner_id: str = Query(...),
    notifier: ChangeNotifier = Depends(get_notifier),
):
    return _event_stream(request, lambda cb: notifier.subscribe_chapters(owner_id, cb))


@router.get("/chapters/{chapter_id}/versions/stream")
async def stream_versions(
    chapter_id: str,
    request: Request,
    notifier: ChangeNotifier = Depends(get_notifier),
):
    return _event_stream(request, lambda cb: notifier.subscribe_versions(chapter_id, cb))


# ---------- chapters ----------

@router.post("/chapters", response_model=CreatedRef, status_code=201)
async def create_chapter(payload: ChapterCreate = Body(...), versions: VersionStore = Depends(get_versions)):
    chapter_id = await versions.create_chapter(payload.owner_id, payload.chapter_number, payload.title)
    return CreatedRef(id=chapter_id)


@router.get("/chapters", response_model=List[ChapterRead])
async def list_chapters(owner_id: str = Query(...), versions: VersionStore = Depends(get_versions)):
    return await versions.list_chapters(owner_id)


@router.post("/chapters/reorder")
async def reorder_chapters(
    payload: ReorderChaptersRequest = Body(...),
    orderer: ChapterOrderer = Depends(get_orderer),
):
    await orderer.reorder(payload.order)
    return {"ok": True}


@router.get("/chapters/{chapter_id}", response_model=ChapterRead)
async def get_chapter(chapter_id: str, versions: VersionStore = Depends(get_versions)):
    return await versions.get_chapter(chapter_id)


@router.patch("/chapters/{chapter_id}", response_model=ChapterRead)
async def update_chapter(
    chapter_id: str,
    payload: ChapterUpdate = Body(...),
    versions: VersionStore = Depends(get_versions),
):
    changes = payload.model_dump(exclude_unset=True)
    # title and status are not nullable
    for key in ("title", "status"):
        if changes.get(key, "") is None:
            del changes[key]
    if changes:
        await versions.update_chapter(chapter_id, **changes)
    return await versions.get_chapter(chapter_id)


# ---------- versions ----------

@router.get("/chapters/{chapter_id}/versions", response_model=List[VersionRead])
async def list_versions(chapter_id: str, versions: VersionStore = Depends(get_versions)):
    await versions.get_chapter(chapter_id)  # 404 for unknown chapters
    return await versions.list_versions(chapter_id)


@router.get("/chapters/{chapter_id}/versions/current", response_model=VersionRead)
async def current_version(chapter_id: str, versions: VersionStore = Depends(get_versions)):
    current = await versions.fetch_current_version(chapter_id)
    if current is None:
        raise NotFound(f"Chapter {chapter_id} has no current version")
    return current


@router.put("/chapters/{chapter_id}/content", response_model=CreatedRef)
async def save_content(
    chapter_id: str,
    payload: ContentSave = Body(...),
    versions: VersionStore = Depends(get_versions),
):
    word_count = payload.word_count if payload.word_count is not None else count_words(payload.content)
    version_id = await versions.save_content(
        chapter_id,
        payload.owner_id,
        payload.content,
        word_count,
        as_new_version=payload.as_new_version,
        version_type=payload.type,
    )
    return CreatedRef(id=version_id)


@router.post("/chapters/{chapter_id}/versions", response_model=CreatedRef, status_code=201)
async def create_version(
    chapter_id: str,
    payload: VersionCreate = Body(...),
    versions: VersionStore = Depends(get_versions),
):
    word_count = payload.word_count if payload.word_count is not None else count_words(payload.content)
    version_id = await versions.create_version(
        chapter_id, payload.owner_id, payload.content, word_count, payload.type
    )
    return CreatedRef(id=version_id)


@router.post("/chapters/{chapter_id}/versions/{version_id}/current")
async def set_current_version(chapter_id: str, version_id: str, versions: VersionStore = Depends(get_versions)):
    await versions.set_current(chapter_id, version_id)
    return {"ok": True}


@router.get("/versions/compare", response_model=VersionComparison)
async def compare_versions(
    base: str = Query(...),
    other: str = Query(...),
    versions: VersionStore = Depends(get_versions),
):
    return await versions.compare_versions(base, other)


@router.patch("/versions/{version_id}/archive")
async def archive_version(
    version_id: str,
    payload: ArchiveRequest = Body(...),
    versions: VersionStore = Depends(get_versions),
):
    await versions.archive(version_id, payload.archived)
    return {"ok": True}


@router.delete("/versions/{version_id}", status_code=204)
async def delete_version(version_id: str, versions: VersionStore = Depends(get_versions)):
    await versions.delete(version_id)


# ---------- owners ----------

@router.post("/owners/transfer", response_model=OwnerTransferResult)
async def transfer_owner(payload: OwnerTransferRequest = Body(...), versions: VersionStore = Depends(get_versions)):
    return await versions.transfer_owner(payload.source_owner_id, payload.dest_owner_id)


__all__ = ["router"]
