from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import orjson
from loguru import logger

from storyweave.domain.clock import resolve_now
from storyweave.domain.errors import NotFoundError, ValidationError
from storyweave.domain.hashing import snapshot_hash
from storyweave.domain.validation import coerce_model
from storyweave.elements.models import ElementCatalog
from storyweave.narrative.models import NarrativeStore

SNAPSHOT_FORMAT_VERSION = 1

_log = logger.bind(component="snapshots")


@dataclass
class Snapshot:
    store: NarrativeStore
    catalog: ElementCatalog
    content_hash: str
    saved_at: str | None = None


def _state_payload(store: NarrativeStore, catalog: ElementCatalog) -> dict[str, Any]:
    return {
        "store": store.model_dump(mode="json"),
        "catalog": catalog.model_dump(mode="json"),
    }


def _hash_payload(payload: dict[str, Any]) -> str:
    # Sorted keys keep the hash independent of dict ordering.
    serialized = orjson.dumps(payload, option=orjson.OPT_SORT_KEYS).decode("utf-8")
    return snapshot_hash(serialized)


def state_hash(store: NarrativeStore, catalog: ElementCatalog) -> str:
    return _hash_payload(_state_payload(store, catalog))


def encode_snapshot(store: NarrativeStore, catalog: ElementCatalog, *, now: datetime | None = None) -> bytes:
    payload = _state_payload(store, catalog)
    document = {
        "format_version": SNAPSHOT_FORMAT_VERSION,
        "saved_at": resolve_now(now).isoformat(),
        "content_hash": _hash_payload(payload),
        **payload,
    }
    return orjson.dumps(document, option=orjson.OPT_INDENT_2)


def decode_snapshot(raw: bytes | str) -> Snapshot:
    try:
        document = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise ValidationError(f"Snapshot is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise ValidationError("Snapshot root must be an object")

    version = document.get("format_version")
    if version != SNAPSHOT_FORMAT_VERSION:
        raise ValidationError(f"Unsupported snapshot format version: {version!r}")
    if "store" not in document or "catalog" not in document:
        raise ValidationError("Snapshot must contain 'store' and 'catalog'")

    payload = {"store": document["store"], "catalog": document["catalog"]}
    content_hash = _hash_payload(payload)
    recorded = document.get("content_hash")
    if recorded is not None and recorded != content_hash:
        raise ValidationError("Snapshot content hash mismatch")

    return Snapshot(
        store=coerce_model(NarrativeStore, payload["store"], label="snapshot store"),
        catalog=coerce_model(ElementCatalog, payload["catalog"], label="snapshot catalog"),
        content_hash=content_hash,
        saved_at=document.get("saved_at"),
    )


def save_snapshot(
    path: Path,
    store: NarrativeStore,
    catalog: ElementCatalog,
    *,
    now: datetime | None = None,
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_snapshot(store, catalog, now=now))
    _log.info("Saved snapshot path={} nodes={} branches={}", path, store.total_nodes, len(store.branches))
    return path


def load_snapshot(path: Path) -> Snapshot:
    path = Path(path)
    if not path.exists():
        raise NotFoundError("snapshot", str(path))
    snapshot = decode_snapshot(path.read_bytes())
    _log.debug("Loaded snapshot path={} hash={}", path, snapshot.content_hash)
    return snapshot
