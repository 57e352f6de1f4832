from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import orjson
import pytest

from storyweave.domain.errors import NotFoundError, ValidationError
from storyweave.elements.catalog import add_element, create_catalog
from storyweave.memory.manager import create
from storyweave.narrative.store import append_node, create_store, fork
from storyweave.storage.snapshots import decode_snapshot, load_snapshot, save_snapshot, state_hash

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _state():
    store = create_store(genre="fantasy", now=NOW)
    store, root = append_node(store, {"content": "The village slept.", "metadata": {"location": "Millbrook"}}, now=NOW)
    store, _ = fork(store, root.id, "Detour", "curiosity", "A side road.", now=NOW)
    store = create(store, "branch_001", {"hp": 3}, now=NOW)
    store = create(store, "main", {"hp": 10}, compress=True, now=NOW)
    catalog = add_element(
        create_catalog(now=NOW),
        {"type": "character", "id": "c1", "name": "Elara", "status": "introduced", "created_at": NOW},
        now=NOW,
    )
    return store, catalog


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    store, catalog = _state()

    path = save_snapshot(tmp_path / "nested" / "story.json", store, catalog, now=NOW)
    snapshot = load_snapshot(path)

    assert snapshot.store == store
    assert snapshot.catalog == catalog
    assert list(snapshot.store.memory_banks) == ["branch_001", "main"]
    assert snapshot.content_hash == state_hash(store, catalog)
    assert snapshot.saved_at == NOW.isoformat()
    assert snapshot.store.memory_banks["main"].data == {"hp": 10}


def test_tampered_snapshot_is_rejected(tmp_path: Path) -> None:
    store, catalog = _state()
    path = save_snapshot(tmp_path / "story.json", store, catalog, now=NOW)

    document = orjson.loads(path.read_bytes())
    document["store"]["total_words"] = 999
    path.write_bytes(orjson.dumps(document))

    with pytest.raises(ValidationError):
        load_snapshot(path)


@pytest.mark.parametrize(
    "raw",
    [
        b"not json",
        b"[1, 2, 3]",
        b'{"format_version": 99, "store": {}, "catalog": {}}',
        b'{"format_version": 1, "store": {}}',
        b'{"format_version": 1, "store": {"nodes": "bad"}, "catalog": {}}',
    ],
)
def test_decode_rejects_malformed_input(raw: bytes) -> None:
    with pytest.raises(ValidationError):
        decode_snapshot(raw)


def test_missing_snapshot_raises_not_found(tmp_path: Path) -> None:
    with pytest.raises(NotFoundError):
        load_snapshot(tmp_path / "missing.json")
