from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from loguru import logger

from storyweave.domain.clock import resolve_now
from storyweave.domain.errors import NotFoundError, VersionConflictError
from storyweave.domain.validation import coerce_model
from storyweave.narrative.models import (
    MAIN_BRANCH_ID,
    BranchImpact,
    BranchMetadata,
    NarrativeBranch,
    NarrativeNode,
    NarrativeStore,
    NodeDraft,
    NodeMetadata,
    StoryMetadata,
)

_log = logger.bind(component="narrative_store")


def node_id_for(sequence: int) -> str:
    return f"narrative_{sequence:03d}"


def node_uri(branch_id: str, node_id: str) -> str:
    return f"narrative://{branch_id}/{node_id}"


def count_words(content: str) -> int:
    return len(content.split())


def create_store(
    *,
    genre: str | None = None,
    tone: str | None = None,
    themes: list[str] | None = None,
    now: datetime | None = None,
) -> NarrativeStore:
    timestamp = resolve_now(now)
    main = NarrativeBranch(
        id=MAIN_BRANCH_ID,
        name="main",
        description="Primary narrative branch",
        parent_node_id=None,
        created_at=timestamp,
    )
    return NarrativeStore(
        branches=[main],
        current_branch_id=MAIN_BRANCH_ID,
        main_branch_id=MAIN_BRANCH_ID,
        last_updated=timestamp,
        metadata=StoryMetadata(genre=genre, tone=tone, themes=list(themes or [])),
    )


def check_version(store: NarrativeStore, expected_version: int | None) -> None:
    if expected_version is not None and expected_version != store.version:
        raise VersionConflictError(expected=expected_version, actual=store.version)


def get_node(store: NarrativeStore, node_id: str) -> NarrativeNode | None:
    return next((node for node in store.nodes if node.id == node_id), None)


def get_node_by_uri(store: NarrativeStore, uri: str) -> NarrativeNode | None:
    return next((node for node in store.nodes if node.uri == uri), None)


def get_branch(store: NarrativeStore, branch_id: str) -> NarrativeBranch | None:
    return next((branch for branch in store.branches if branch.id == branch_id), None)


def require_branch(store: NarrativeStore, branch_id: str) -> NarrativeBranch:
    branch = get_branch(store, branch_id)
    if branch is None:
        raise NotFoundError("branch", branch_id)
    return branch


def branch_nodes(store: NarrativeStore, branch_id: str) -> list[NarrativeNode]:
    return sorted((node for node in store.nodes if node.branch_id == branch_id), key=lambda node: node.sequence)


def recent_nodes(store: NarrativeStore, count: int) -> list[NarrativeNode]:
    """Last ``count`` nodes in append order, oldest first."""

    if count <= 0:
        return []
    return list(store.nodes[-count:])


def path(store: NarrativeStore, node_id: str) -> list[NarrativeNode]:
    """Root-to-node lineage following parent ids.

    Parent links always form a forest because a parent must exist when a node
    is appended, so the walk terminates.
    """

    lineage: list[NarrativeNode] = []
    current = get_node(store, node_id)
    while current is not None:
        lineage.append(current)
        current = get_node(store, current.parent_id) if current.parent_id else None
    lineage.reverse()
    return lineage


def _with_nodes(
    store: NarrativeStore,
    nodes: list[NarrativeNode],
    *,
    now: datetime,
    **update: Any,
) -> NarrativeStore:
    """Only place node totals are derived."""

    return store.model_copy(
        update={
            **update,
            "nodes": nodes,
            "total_nodes": len(nodes),
            "total_words": sum(node.word_count for node in nodes),
            "last_updated": now,
            "version": store.version + 1,
        }
    )


def append_node(
    store: NarrativeStore,
    draft: NodeDraft | Mapping[str, Any],
    *,
    parent_id: str | None = None,
    branch_id: str | None = None,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> tuple[NarrativeStore, NarrativeNode]:
    check_version(store, expected_version)
    draft = coerce_model(NodeDraft, draft, label="node draft")
    timestamp = resolve_now(now)

    parent: NarrativeNode | None = None
    if parent_id is not None:
        parent = get_node(store, parent_id)
        if parent is None:
            raise NotFoundError("node", parent_id)

    if branch_id is not None:
        target_branch_id = branch_id
    elif parent is not None:
        target_branch_id = parent.branch_id
    else:
        target_branch_id = store.current_branch_id or store.main_branch_id
    branch = require_branch(store, target_branch_id)

    siblings = branch_nodes(store, branch.id)
    if parent is not None:
        resolved_parent_id: str | None = parent.id
    elif siblings:
        resolved_parent_id = siblings[-1].id
    else:
        resolved_parent_id = branch.parent_node_id

    node_id = node_id_for(store.total_nodes)
    node = NarrativeNode(
        id=node_id,
        uri=node_uri(branch.id, node_id),
        parent_id=resolved_parent_id,
        branch_id=branch.id,
        sequence=len(siblings),
        title=draft.title,
        content=draft.content,
        word_count=count_words(draft.content),
        created_at=timestamp,
        updated_at=timestamp,
        tags=list(draft.tags),
        metadata=draft.metadata,
    )

    updated = _with_nodes(
        store,
        [*store.nodes, node],
        current_node_id=node.id,
        current_branch_id=branch.id,
        now=timestamp,
    )
    _log.bind(branch_id=branch.id, node_id=node.id).debug(
        "Appended node sequence={} words={} parent={}",
        node.sequence,
        node.word_count,
        node.parent_id,
    )
    return updated, node


def _next_branch_id(store: NarrativeStore) -> str:
    existing = {branch.id for branch in store.branches}
    counter = len(store.branches)
    candidate = f"branch_{counter:03d}"
    while candidate in existing:
        counter += 1
        candidate = f"branch_{counter:03d}"
    return candidate


def fork(
    store: NarrativeStore,
    parent_node_id: str,
    branch_name: str,
    reason: str,
    initial_content: str,
    *,
    choice: str | None = None,
    impact: BranchImpact = "moderate",
    expected_version: int | None = None,
    now: datetime | None = None,
) -> tuple[NarrativeStore, NarrativeNode]:
    check_version(store, expected_version)
    parent = get_node(store, parent_node_id)
    if parent is None:
        raise NotFoundError("node", parent_node_id)

    timestamp = resolve_now(now)
    branch = NarrativeBranch(
        id=_next_branch_id(store),
        name=branch_name,
        description=reason,
        parent_node_id=parent.id,
        created_at=timestamp,
        metadata=BranchMetadata(reason=reason, choice=choice, impact=impact),
    )
    draft = NodeDraft(
        title=f"{branch_name} - {parent.title}",
        content=initial_content,
        tags=["branch", branch_name.lower()],
        metadata=NodeMetadata(
            author="narrator",
            mood="exploratory",
            location=parent.metadata.location,
            characters=list(parent.metadata.characters),
            events=[f"branch: {branch_name}"],
        ),
    )

    with_branch = store.model_copy(update={"branches": [*store.branches, branch]})
    updated, node = append_node(with_branch, draft, parent_id=parent.id, branch_id=branch.id, now=timestamp)
    _log.bind(branch_id=branch.id, node_id=node.id).info(
        "Forked branch '{}' at {} reason={}",
        branch_name,
        parent.id,
        reason,
    )
    return updated, node


def switch_branch(
    store: NarrativeStore,
    branch_id: str,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> NarrativeStore:
    check_version(store, expected_version)
    branch = require_branch(store, branch_id)
    nodes = branch_nodes(store, branch.id)
    current_node_id = nodes[-1].id if nodes else branch.parent_node_id
    return store.model_copy(
        update={
            "current_branch_id": branch.id,
            "current_node_id": current_node_id,
            "last_updated": resolve_now(now),
            "version": store.version + 1,
        }
    )
