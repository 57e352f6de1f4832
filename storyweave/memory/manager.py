from __future__ import annotations

import base64
import zlib
from datetime import datetime, timedelta
from typing import Any, Mapping

import orjson
from loguru import logger

from storyweave.config.schema import MemoryBankConfig
from storyweave.domain.clock import resolve_now
from storyweave.domain.errors import NotFoundError, SizeLimitError, ValidationError
from storyweave.domain.hashing import rolling_checksum
from storyweave.narrative.models import MemoryBank, MemoryStats, NarrativeBranch, NarrativeStore
from storyweave.narrative.store import require_branch

ACTIVE_WINDOW_HOURS = 24
DEFAULT_CLEANUP_MAX_AGE_HOURS = 24
DEFAULT_CLEANUP_MAX_SIZE_BYTES = 10 * 1024 * 1024

_log = logger.bind(component="memory_bank")


def serialize_data(data: Mapping[str, Any]) -> str:
    if not isinstance(data, Mapping):
        raise ValidationError(f"Memory bank data must be a mapping, got {type(data).__name__}")
    try:
        return orjson.dumps(dict(data)).decode("utf-8")
    except orjson.JSONEncodeError as exc:
        raise ValidationError(f"Memory bank data is not serializable: {exc}") from exc


def build_bank(
    branch_id: str,
    data: Mapping[str, Any],
    *,
    compress: bool = False,
    max_size: int | None = None,
    now: datetime | None = None,
) -> MemoryBank:
    serialized = serialize_data(data)
    size = len(serialized.encode("utf-8"))
    if max_size is not None and size > max_size:
        raise SizeLimitError(size=size, limit=max_size)

    if compress:
        payload = base64.b64encode(zlib.compress(serialized.encode("utf-8"))).decode("ascii")
    else:
        payload = serialized

    return MemoryBank(
        branch_id=branch_id,
        payload=payload,
        checksum=rolling_checksum(serialized),
        size=size,
        stored_size=len(payload.encode("utf-8")),
        last_accessed=resolve_now(now),
        compressed=compress,
    )


def verify(bank: MemoryBank) -> bool:
    """True when the payload still matches the checksum it was written with."""

    return rolling_checksum(bank.serialized()) == bank.checksum


def compute_stats(
    banks: Mapping[str, MemoryBank],
    *,
    now: datetime,
    last_cleanup: datetime | None,
) -> MemoryStats:
    active_cutoff = now - timedelta(hours=ACTIVE_WINDOW_HOURS)
    return MemoryStats(
        total_memory_banks=len(banks),
        total_memory_size=sum(bank.size for bank in banks.values()),
        active_memory_banks=sum(1 for bank in banks.values() if bank.last_accessed > active_cutoff),
        last_cleanup=last_cleanup,
    )


def _with_bank_reference(
    branches: list[NarrativeBranch],
    branch_ids: set[str],
    bank_id: str | None,
) -> list[NarrativeBranch]:
    return [
        branch.model_copy(update={"memory_bank_id": bank_id}) if branch.id in branch_ids else branch
        for branch in branches
    ]


def _commit(
    store: NarrativeStore,
    banks: dict[str, MemoryBank],
    branches: list[NarrativeBranch],
    *,
    now: datetime,
    last_cleanup: datetime | None,
) -> NarrativeStore:
    return store.model_copy(
        update={
            "memory_banks": banks,
            "branches": branches,
            "memory_stats": compute_stats(banks, now=now, last_cleanup=last_cleanup),
            "last_updated": now,
            "version": store.version + 1,
        }
    )


def create(
    store: NarrativeStore,
    branch_id: str,
    data: Mapping[str, Any],
    *,
    compress: bool = False,
    max_size: int | None = None,
    now: datetime | None = None,
) -> NarrativeStore:
    require_branch(store, branch_id)
    timestamp = resolve_now(now)
    bank = build_bank(branch_id, data, compress=compress, max_size=max_size, now=timestamp)

    banks = dict(store.memory_banks)
    banks[branch_id] = bank
    branches = _with_bank_reference(store.branches, {branch_id}, branch_id)

    _log.bind(branch_id=branch_id).debug(
        "Stored memory bank size={} stored={} checksum={} compressed={}",
        bank.size,
        bank.stored_size,
        bank.checksum,
        bank.compressed,
    )
    return _commit(store, banks, branches, now=timestamp, last_cleanup=store.memory_stats.last_cleanup)


def get(store: NarrativeStore, branch_id: str, *, now: datetime | None = None) -> MemoryBank | None:
    """Read a bank with its access time refreshed; None when the branch never stored one."""

    bank = store.memory_banks.get(branch_id)
    if bank is None:
        return None
    return bank.model_copy(update={"last_accessed": resolve_now(now)})


def access(
    store: NarrativeStore,
    branch_id: str,
    *,
    now: datetime | None = None,
) -> tuple[NarrativeStore, MemoryBank | None]:
    timestamp = resolve_now(now)
    bank = get(store, branch_id, now=timestamp)
    if bank is None:
        return store, None

    banks = dict(store.memory_banks)
    banks[branch_id] = bank
    updated = store.model_copy(
        update={
            "memory_banks": banks,
            "memory_stats": compute_stats(banks, now=timestamp, last_cleanup=store.memory_stats.last_cleanup),
        }
    )
    return updated, bank


def update(
    store: NarrativeStore,
    branch_id: str,
    partial_data: Mapping[str, Any],
    *,
    max_size: int | None = None,
    now: datetime | None = None,
) -> NarrativeStore:
    existing = store.memory_banks.get(branch_id)
    if existing is None:
        raise NotFoundError("memory bank", branch_id)
    if not isinstance(partial_data, Mapping):
        raise ValidationError(f"Memory bank update must be a mapping, got {type(partial_data).__name__}")

    merged = {**existing.data, **partial_data}
    return create(store, branch_id, merged, compress=existing.compressed, max_size=max_size, now=now)


def delete(store: NarrativeStore, branch_id: str, *, now: datetime | None = None) -> NarrativeStore:
    if branch_id not in store.memory_banks:
        return store

    timestamp = resolve_now(now)
    banks = {key: bank for key, bank in store.memory_banks.items() if key != branch_id}
    branches = _with_bank_reference(store.branches, {branch_id}, None)
    _log.bind(branch_id=branch_id).debug("Deleted memory bank")
    return _commit(store, banks, branches, now=timestamp, last_cleanup=store.memory_stats.last_cleanup)


def cleanup(
    store: NarrativeStore,
    *,
    max_age_hours: float = DEFAULT_CLEANUP_MAX_AGE_HOURS,
    max_size_bytes: int = DEFAULT_CLEANUP_MAX_SIZE_BYTES,
    keep_active: bool = True,
    now: datetime | None = None,
) -> NarrativeStore:
    """Evict stale banks in insertion order.

    A bank goes when it was last accessed more than ``max_age_hours`` ago and
    either ``keep_active`` is off or keeping it would push the running total
    past ``max_size_bytes``.
    """

    timestamp = resolve_now(now)
    cutoff = timestamp - timedelta(hours=max_age_hours)

    kept: dict[str, MemoryBank] = {}
    evicted: list[str] = []
    running_total = 0
    for branch_id, bank in store.memory_banks.items():
        is_recent = bank.last_accessed > cutoff
        would_exceed = running_total + bank.size > max_size_bytes
        if not is_recent and (not keep_active or would_exceed):
            evicted.append(branch_id)
            continue
        kept[branch_id] = bank
        running_total += bank.size

    branches = _with_bank_reference(store.branches, set(evicted), None)
    _log.info(
        "Memory bank cleanup kept={} evicted={} total_size={} max_age_hours={} keep_active={}",
        len(kept),
        len(evicted),
        running_total,
        max_age_hours,
        keep_active,
    )
    return _commit(store, kept, branches, now=timestamp, last_cleanup=timestamp)


def memory_stats(store: NarrativeStore) -> MemoryStats:
    return store.memory_stats


class MemoryBankManager:
    """Memory bank operations with limits taken from configuration."""

    def __init__(self, config: MemoryBankConfig | None = None) -> None:
        self.config = config or MemoryBankConfig()

    def create(
        self,
        store: NarrativeStore,
        branch_id: str,
        data: Mapping[str, Any],
        *,
        compress: bool | None = None,
        now: datetime | None = None,
    ) -> NarrativeStore:
        return create(
            store,
            branch_id,
            data,
            compress=self.config.compress if compress is None else compress,
            max_size=self.config.max_size_bytes,
            now=now,
        )

    def get(self, store: NarrativeStore, branch_id: str, *, now: datetime | None = None) -> MemoryBank | None:
        return get(store, branch_id, now=now)

    def access(
        self,
        store: NarrativeStore,
        branch_id: str,
        *,
        now: datetime | None = None,
    ) -> tuple[NarrativeStore, MemoryBank | None]:
        return access(store, branch_id, now=now)

    def update(
        self,
        store: NarrativeStore,
        branch_id: str,
        partial_data: Mapping[str, Any],
        *,
        now: datetime | None = None,
    ) -> NarrativeStore:
        return update(store, branch_id, partial_data, max_size=self.config.max_size_bytes, now=now)

    def delete(self, store: NarrativeStore, branch_id: str, *, now: datetime | None = None) -> NarrativeStore:
        return delete(store, branch_id, now=now)

    def cleanup(self, store: NarrativeStore, *, now: datetime | None = None) -> NarrativeStore:
        return cleanup(
            store,
            max_age_hours=self.config.cleanup_max_age_hours,
            max_size_bytes=self.config.cleanup_max_total_bytes,
            keep_active=self.config.keep_active,
            now=now,
        )
