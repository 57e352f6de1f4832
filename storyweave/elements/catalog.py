from __future__ import annotations

from datetime import datetime
from itertools import chain
from typing import Any, Iterable, Mapping

import pydantic
from loguru import logger

from storyweave.domain.clock import resolve_now
from storyweave.domain.errors import NotFoundError, ValidationError
from storyweave.elements.models import (
    ELEMENT_ADAPTER,
    ELEMENT_LISTS,
    LIST_FOR_TYPE,
    CatalogMetadata,
    ElementCatalog,
    ElementStatus,
    ForeshadowingHint,
    NarrativeElement,
    StoryPhase,
    StoryThread,
    advance_hint_status,
    advance_status,
)

_log = logger.bind(component="element_catalog")

_TYPE_FOR_LIST = {list_name: element_type for element_type, list_name in LIST_FOR_TYPE.items()}
_MERGEABLE_LISTS = (*ELEMENT_LISTS, "story_threads", "foreshadowing")
_METADATA_PATCH_KEYS = {"story_phase", "genre", "tone", "catalog_version"}
_DERIVED_METADATA_KEYS = {"total_elements", "pending_introductions", "active_threads", "last_updated"}


def create_catalog(
    *,
    genre: str | None = None,
    tone: str | None = None,
    story_phase: StoryPhase = "setup",
    now: datetime | None = None,
) -> ElementCatalog:
    return ElementCatalog(
        metadata=CatalogMetadata(
            last_updated=resolve_now(now),
            story_phase=story_phase,
            genre=genre,
            tone=tone,
        )
    )


def all_elements(catalog: ElementCatalog) -> list[NarrativeElement]:
    return list(chain(catalog.characters, catalog.locations, catalog.plot_twists, catalog.objects, catalog.themes))


def elements_of_type(catalog: ElementCatalog, element_type: str) -> list[NarrativeElement]:
    list_name = LIST_FOR_TYPE.get(element_type)
    if list_name is None:
        return []
    return list(getattr(catalog, list_name))


def find_element(catalog: ElementCatalog, element_id: str) -> NarrativeElement | None:
    return next((element for element in all_elements(catalog) if element.id == element_id), None)


def find_hint(catalog: ElementCatalog, hint_id: str) -> ForeshadowingHint | None:
    return next((hint for hint in catalog.foreshadowing if hint.id == hint_id), None)


def _recompute_metadata(catalog: ElementCatalog, metadata: CatalogMetadata, *, touched_at: datetime | None) -> ElementCatalog:
    elements = all_elements(catalog)
    update: dict[str, Any] = {
        "total_elements": len(elements),
        "pending_introductions": sum(1 for element in elements if element.status == ElementStatus.UNMET),
        "active_threads": sum(1 for thread in catalog.story_threads if thread.status == "active"),
    }
    if touched_at is not None:
        update["last_updated"] = touched_at
    return catalog.model_copy(update={"metadata": metadata.model_copy(update=update)})


def _as_patch(raw: Any, list_name: str) -> dict[str, Any]:
    if isinstance(raw, pydantic.BaseModel):
        return raw.model_dump()
    if isinstance(raw, Mapping):
        return dict(raw)
    raise ValidationError(f"Entries of '{list_name}' must be models or mappings, got {type(raw).__name__}")


def _validate_entry(list_name: str, data: dict[str, Any]) -> Any:
    try:
        if list_name in ELEMENT_LISTS:
            data.setdefault("type", _TYPE_FOR_LIST[list_name])
            item = ELEMENT_ADAPTER.validate_python(data)
            if LIST_FOR_TYPE[item.type] != list_name:
                raise ValidationError(f"Element '{item.id}' of type '{item.type}' cannot be stored in '{list_name}'")
            return item
        if list_name == "story_threads":
            return StoryThread.model_validate(data)
        return ForeshadowingHint.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Malformed entry in '{list_name}': {exc}") from exc


def _check_forward(list_name: str, before: Any, after: Any) -> None:
    if list_name in ELEMENT_LISTS:
        advance_status(before.status, after.status)
    elif list_name == "foreshadowing":
        advance_hint_status(before.status, after.status)


def _merge_list(list_name: str, current: list[Any], entries: Iterable[Any]) -> list[Any]:
    merged = list(current)
    positions = {item.id: index for index, item in enumerate(merged)}
    for raw in entries:
        patch = _as_patch(raw, list_name)
        entry_id = patch.get("id")
        if not isinstance(entry_id, str) or not entry_id:
            raise ValidationError(f"Entries of '{list_name}' require a non-empty string id")

        if entry_id in positions:
            before = merged[positions[entry_id]]
            after = _validate_entry(list_name, {**before.model_dump(), **patch})
            _check_forward(list_name, before, after)
            merged[positions[entry_id]] = after
        else:
            positions[entry_id] = len(merged)
            merged.append(_validate_entry(list_name, patch))
    return merged


def _normalize_updates(updates: ElementCatalog | Mapping[str, Any]) -> tuple[dict[str, list[Any]], dict[str, Any]]:
    if isinstance(updates, ElementCatalog):
        lists = {list_name: list(getattr(updates, list_name)) for list_name in _MERGEABLE_LISTS}
        metadata_patch = updates.metadata.model_dump(exclude_defaults=True, exclude_none=True)
    elif isinstance(updates, Mapping):
        unknown = set(updates) - {*_MERGEABLE_LISTS, "metadata"}
        if unknown:
            raise ValidationError(f"Unknown catalog sections: {sorted(unknown)}")
        lists = {}
        for list_name in _MERGEABLE_LISTS:
            if list_name not in updates or updates[list_name] is None:
                continue
            entries = updates[list_name]
            if isinstance(entries, (str, bytes, Mapping)) or not isinstance(entries, Iterable):
                raise ValidationError(f"Catalog section '{list_name}' must be a list")
            lists[list_name] = list(entries)
        raw_metadata = updates.get("metadata") or {}
        if isinstance(raw_metadata, CatalogMetadata):
            metadata_patch = raw_metadata.model_dump(exclude_unset=True)
        elif isinstance(raw_metadata, Mapping):
            metadata_patch = dict(raw_metadata)
        else:
            raise ValidationError("Catalog metadata patch must be a mapping")
    else:
        raise ValidationError(f"Catalog updates must be a catalog or mapping, got {type(updates).__name__}")

    metadata_patch = {key: value for key, value in metadata_patch.items() if key not in _DERIVED_METADATA_KEYS}
    unknown_meta = set(metadata_patch) - _METADATA_PATCH_KEYS
    if unknown_meta:
        raise ValidationError(f"Unknown catalog metadata fields: {sorted(unknown_meta)}")
    return lists, metadata_patch


def merge(
    existing: ElementCatalog,
    updates: ElementCatalog | Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> ElementCatalog:
    """Merge entries by id and recompute the catalog totals.

    Model entries replace the stored entry; mapping entries patch only the
    keys they carry. New ids must validate as complete entries. A merge that
    changes nothing keeps ``last_updated``, which makes the operation
    idempotent.
    """

    lists, metadata_patch = _normalize_updates(updates)

    changes: dict[str, list[Any]] = {}
    for list_name, entries in lists.items():
        current = list(getattr(existing, list_name))
        merged = _merge_list(list_name, current, entries)
        if merged != current:
            changes[list_name] = merged

    metadata = existing.metadata
    if metadata_patch:
        try:
            metadata = CatalogMetadata.model_validate({**existing.metadata.model_dump(), **metadata_patch})
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Malformed catalog metadata: {exc}") from exc

    changed = bool(changes) or metadata != existing.metadata
    updated = existing.model_copy(update=changes) if changes else existing
    result = _recompute_metadata(updated, metadata, touched_at=resolve_now(now) if changed else None)
    if changed:
        _log.debug(
            "Merged catalog sections={} total_elements={} pending={}",
            sorted(changes),
            result.metadata.total_elements,
            result.metadata.pending_introductions,
        )
    return result


def add_element(
    catalog: ElementCatalog,
    element: NarrativeElement | Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> ElementCatalog:
    if isinstance(element, Mapping):
        try:
            element = ELEMENT_ADAPTER.validate_python(dict(element))
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Malformed element: {exc}") from exc
    if find_element(catalog, element.id) is not None:
        raise ValidationError(f"Duplicate element id: {element.id}")
    return merge(catalog, {LIST_FOR_TYPE[element.type]: [element]}, now=now)


def update_status(
    catalog: ElementCatalog,
    element_id: str,
    new_status: ElementStatus | str,
    *,
    now: datetime | None = None,
) -> ElementCatalog:
    element = find_element(catalog, element_id)
    if element is None:
        raise NotFoundError("element", element_id)

    timestamp = resolve_now(now)
    status = advance_status(element.status, new_status)
    updated = element.model_copy(update={"status": status, "last_referenced": timestamp})
    return merge(catalog, {LIST_FOR_TYPE[element.type]: [updated]}, now=timestamp)


def mark_introduced(
    catalog: ElementCatalog,
    element_ids: Iterable[str],
    *,
    now: datetime | None = None,
) -> ElementCatalog:
    """Move still-unmet elements to introduced; others are left alone."""

    timestamp = resolve_now(now)
    for element_id in element_ids:
        element = find_element(catalog, element_id)
        if element is not None and element.status == ElementStatus.UNMET:
            catalog = update_status(catalog, element_id, ElementStatus.INTRODUCED, now=timestamp)
    return catalog


def add_hint(
    catalog: ElementCatalog,
    hint: ForeshadowingHint | Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> ElementCatalog:
    hint_id = hint.id if isinstance(hint, ForeshadowingHint) else dict(hint).get("id")
    if isinstance(hint_id, str) and find_hint(catalog, hint_id) is not None:
        raise ValidationError(f"Duplicate foreshadowing hint id: {hint_id}")
    return merge(catalog, {"foreshadowing": [hint]}, now=now)


def update_hint_status(
    catalog: ElementCatalog,
    hint_id: str,
    new_status: str,
    *,
    now: datetime | None = None,
) -> ElementCatalog:
    hint = find_hint(catalog, hint_id)
    if hint is None:
        raise NotFoundError("foreshadowing hint", hint_id)
    advance_hint_status(hint.status, new_status)
    return merge(catalog, {"foreshadowing": [{"id": hint_id, "status": new_status}]}, now=now)


def add_thread(
    catalog: ElementCatalog,
    thread: StoryThread | Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> ElementCatalog:
    thread_id = thread.id if isinstance(thread, StoryThread) else dict(thread).get("id")
    if any(existing.id == thread_id for existing in catalog.story_threads):
        raise ValidationError(f"Duplicate story thread id: {thread_id}")
    return merge(catalog, {"story_threads": [thread]}, now=now)
