import asyncio

import httpx
import pytest

from chrysalis.main import app
from chrysalis.routers.chapters import _keep_latest
from chrysalis.routes_shared import get_notifier, get_orderer, get_versions


@pytest.fixture
async def client(versions, orderer, notifier):
    app.dependency_overrides[get_versions] = lambda: versions
    app.dependency_overrides[get_orderer] = lambda: orderer
    app.dependency_overrides[get_notifier] = lambda: notifier
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _new_chapter(client, number=1, title="Intro", owner="u1"):
    r = await client.post("/api/chapters", json={"owner_id": owner, "chapter_number": number, "title": title})
    assert r.status_code == 201
    return r.json()["id"]


async def test_chapter_lifecycle_over_http(client):
    chapter_id = await _new_chapter(client)

    r = await client.get(f"/api/chapters/{chapter_id}")
    assert r.status_code == 200
    body = r.json()
    assert body["version_count"] == 1
    assert body["status"] == "draft"

    r = await client.get(f"/api/chapters/{chapter_id}/versions/current")
    assert r.json()["version_number"] == 1
    assert r.json()["type"] == "original"

    # autosave counts words when the caller does not
    r = await client.put(
        f"/api/chapters/{chapter_id}/content",
        json={"owner_id": "u1", "content": "<p>It was a dark night</p>"},
    )
    assert r.status_code == 200
    r = await client.get(f"/api/chapters/{chapter_id}")
    assert r.json()["word_count"] == 5
    assert r.json()["version_count"] == 1

    r = await client.post(
        f"/api/chapters/{chapter_id}/versions",
        json={"owner_id": "u1", "content": "Enhanced text", "word_count": 2, "type": "jung"},
    )
    assert r.status_code == 201
    new_id = r.json()["id"]

    r = await client.get(f"/api/chapters/{chapter_id}/versions")
    listed = r.json()
    assert [v["version_number"] for v in listed] == [2, 1]
    assert listed[0]["id"] == new_id and listed[0]["is_current"]
    old_id = listed[1]["id"]

    r = await client.post(f"/api/chapters/{chapter_id}/versions/{old_id}/current")
    assert r.status_code == 200
    r = await client.get(f"/api/chapters/{chapter_id}")
    assert r.json()["current_version_id"] == old_id
    assert r.json()["word_count"] == 5

    r = await client.patch(f"/api/versions/{new_id}/archive", json={"archived": True})
    assert r.status_code == 200

    r = await client.delete(f"/api/versions/{old_id}")
    assert r.status_code == 409
    r = await client.delete(f"/api/versions/{new_id}")
    assert r.status_code == 204


async def test_save_as_new_version_over_http(client):
    chapter_id = await _new_chapter(client)
    r = await client.put(
        f"/api/chapters/{chapter_id}/content",
        json={"owner_id": "u1", "content": "fresh words", "as_new_version": True},
    )
    version_id = r.json()["id"]
    r = await client.get(f"/api/chapters/{chapter_id}/versions/current")
    assert r.json()["id"] == version_id
    assert r.json()["type"] == "edited"
    assert r.json()["word_count"] == 2


async def test_errors_map_to_status_codes(client):
    chapter_id = await _new_chapter(client)

    assert (await client.get("/api/chapters/missing")).status_code == 404
    assert (await client.get("/api/chapters/missing/versions")).status_code == 404
    assert (await client.delete("/api/versions/missing")).status_code == 404
    r = await client.post(f"/api/chapters/{chapter_id}/versions/missing/current")
    assert r.status_code == 404
    assert "detail" in r.json()

    r = await client.post("/api/chapters", json={"owner_id": "u1", "chapter_number": 0})
    assert r.status_code == 422
    r = await client.post(
        f"/api/chapters/{chapter_id}/versions",
        json={"owner_id": "u1", "content": "x", "type": "sonnet"},
    )
    assert r.status_code == 422


async def test_patch_reorder_and_list(client):
    a = await _new_chapter(client, 1, "A")
    b = await _new_chapter(client, 2, "B")

    r = await client.patch(
        f"/api/chapters/{a}",
        json={"title": "Alpha", "status": "final", "butterfly_stage": "chrysalis"},
    )
    assert r.status_code == 200
    assert r.json()["title"] == "Alpha"
    assert r.json()["status"] == "final"
    assert r.json()["butterfly_stage"] == "chrysalis"

    r = await client.post("/api/chapters/reorder", json={"order": [b, a]})
    assert r.status_code == 200
    r = await client.get("/api/chapters", params={"owner_id": "u1"})
    assert [c["title"] for c in r.json()] == ["B", "Alpha"]

    r = await client.post("/api/chapters/reorder", json={"order": [a, "missing"]})
    assert r.status_code == 404


async def test_patch_keeps_fields_not_sent(client):
    chapter_id = await _new_chapter(client)
    r = await client.patch(
        f"/api/chapters/{chapter_id}",
        json={"butterfly_analogy": "a caterpillar eating", "butterfly_stage": "caterpillar"},
    )
    assert r.status_code == 200

    r = await client.patch(f"/api/chapters/{chapter_id}", json={"butterfly_stage": "chrysalis"})
    assert r.json()["butterfly_analogy"] == "a caterpillar eating"
    assert r.json()["butterfly_stage"] == "chrysalis"

    r = await client.patch(f"/api/chapters/{chapter_id}", json={"butterfly_analogy": "wings drying"})
    assert r.json()["butterfly_analogy"] == "wings drying"
    assert r.json()["butterfly_stage"] == "chrysalis"

    # explicit null clears the analogy, a null title is ignored
    r = await client.patch(f"/api/chapters/{chapter_id}", json={"butterfly_analogy": None, "title": None})
    assert r.json()["butterfly_analogy"] is None
    assert r.json()["butterfly_stage"] == "chrysalis"
    assert r.json()["title"] == "Intro"


async def test_stream_buffer_keeps_only_newest_snapshot():
    queue = asyncio.Queue(maxsize=1)
    offer = _keep_latest(queue)
    for snapshot in (["v1"], ["v2", "v1"], ["v3", "v2", "v1"]):
        offer(snapshot)
    assert queue.qsize() == 1
    assert queue.get_nowait() == ["v3", "v2", "v1"]


async def test_compare_and_transfer(client):
    chapter_id = await _new_chapter(client, owner="old")
    r1 = await client.post(f"/api/chapters/{chapter_id}/versions", json={"owner_id": "old", "content": "one two"})
    r2 = await client.post(f"/api/chapters/{chapter_id}/versions", json={"owner_id": "old", "content": "one three"})

    r = await client.get("/api/versions/compare", params={"base": r1.json()["id"], "other": r2.json()["id"]})
    assert r.status_code == 200
    assert r.json()["words_added"] == 1
    assert r.json()["words_removed"] == 1

    r = await client.post("/api/owners/transfer", json={"source_owner_id": "old", "dest_owner_id": "new"})
    assert r.json() == {"chapters": 1, "versions": 3}
    r = await client.get("/api/chapters", params={"owner_id": "new"})
    assert len(r.json()) == 1
