from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from loguru import logger

from storyweave.config.schema import AppConfigRoot
from storyweave.consistency.auditor import ConsistencyChecker
from storyweave.consistency.models import ConsistencyVerdict
from storyweave.domain.clock import resolve_now
from storyweave.domain.validation import coerce_model
from storyweave.elements.catalog import create_catalog, mark_introduced
from storyweave.elements.models import ElementCatalog, ForeshadowingHint, NarrativeElement
from storyweave.elements.selector import ElementSelector
from storyweave.memory.manager import MemoryBankManager
from storyweave.narrative.models import NarrativeNode, NarrativeStore, NodeDraft, NodeMetadata
from storyweave.narrative.store import append_node, create_store, fork, get_node, switch_branch

_log = logger.bind(component="session")


@dataclass
class TurnResult:
    node: NarrativeNode
    introduced_ids: list[str]
    verdict: ConsistencyVerdict | None
    context: str


@dataclass
class PromptContext:
    context: str
    ready: list[NarrativeElement]
    foreshadowing: list[ForeshadowingHint]


@dataclass
class StorySession:
    """Bookkeeping around one generation loop.

    Holds the current store, catalog and checker values and swaps them only
    after a turn has been fully processed, so a failure leaves the session as
    it was.
    """

    store: NarrativeStore
    catalog: ElementCatalog
    config: AppConfigRoot = field(default_factory=AppConfigRoot)
    checker: ConsistencyChecker | None = None

    def __post_init__(self) -> None:
        if self.checker is None:
            self.checker = ConsistencyChecker.from_config(self.config.checker, self.config.audit)
        self.banks = MemoryBankManager(self.config.memory)

    @classmethod
    def start(
        cls,
        *,
        config: AppConfigRoot | None = None,
        genre: str | None = None,
        tone: str | None = None,
        themes: list[str] | None = None,
        now: datetime | None = None,
    ) -> "StorySession":
        timestamp = resolve_now(now)
        return cls(
            store=create_store(genre=genre, tone=tone, themes=themes, now=timestamp),
            catalog=create_catalog(genre=genre, tone=tone, now=timestamp),
            config=config or AppConfigRoot(),
        )

    def selector(self, *, now: datetime | None = None) -> ElementSelector:
        return ElementSelector(self.catalog, now=now, config=self.config.selector)

    def record_turn(
        self,
        content: str,
        *,
        title: str = "",
        tags: list[str] | None = None,
        metadata: NodeMetadata | Mapping[str, Any] | None = None,
        parent_id: str | None = None,
        branch_id: str | None = None,
        now: datetime | None = None,
    ) -> TurnResult:
        timestamp = resolve_now(now)
        turn_log = _log.bind(branch_id=branch_id or self.store.current_branch_id)
        try:
            draft = coerce_model(
                NodeDraft,
                {"title": title, "content": content, "tags": list(tags or []), "metadata": metadata or {}},
                label="turn",
            )
            store, node = append_node(
                self.store,
                draft,
                parent_id=parent_id,
                branch_id=branch_id,
                expected_version=self.store.version,
                now=timestamp,
            )
            introduced = self.selector(now=timestamp).mentioned_unmet(content)
            catalog = mark_introduced(self.catalog, introduced, now=timestamp)

            checker = self.checker
            verdict: ConsistencyVerdict | None = None
            if checker is not None and checker.enabled:
                verdict = checker.auditor(self.config.audit).audit_path(store, node.id, now=timestamp)
                checker = checker.record(verdict)
        except Exception:
            turn_log.exception("Recording turn failed")
            raise

        self.store, self.catalog, self.checker = store, catalog, checker
        context = self.selector(now=timestamp).abbreviated_context(content)
        turn_log.bind(branch_id=node.branch_id, node_id=node.id).info(
            "Recorded turn words={} introduced={} score={} needs_revision={}",
            node.word_count,
            len(introduced),
            verdict.overall_score if verdict else "-",
            verdict.needs_revision if verdict else False,
        )
        return TurnResult(node=node, introduced_ids=introduced, verdict=verdict, context=context)

    def branch(
        self,
        parent_node_id: str,
        branch_name: str,
        reason: str,
        initial_content: str,
        *,
        choice: str | None = None,
        now: datetime | None = None,
    ) -> NarrativeNode:
        self.store, node = fork(
            self.store,
            parent_node_id,
            branch_name,
            reason,
            initial_content,
            choice=choice,
            expected_version=self.store.version,
            now=now,
        )
        return node

    def switch(self, branch_id: str, *, now: datetime | None = None) -> None:
        self.store = switch_branch(self.store, branch_id, expected_version=self.store.version, now=now)

    def prompt_context(self, context_text: str | None = None, *, now: datetime | None = None) -> PromptContext:
        if context_text is None:
            current = get_node(self.store, self.store.current_node_id) if self.store.current_node_id else None
            context_text = current.content if current else ""

        selector = self.selector(now=now)
        return PromptContext(
            context=selector.abbreviated_context(context_text),
            ready=selector.ready_for_introduction(),
            foreshadowing=selector.foreshadowing_opportunities(context_text),
        )

    def _current_branch_id(self) -> str:
        return self.store.current_branch_id or self.store.main_branch_id

    def persist_state(
        self,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
        now: datetime | None = None,
    ) -> None:
        """Store per-branch state; ``merge`` patches the existing bank shallowly."""

        branch_id = self._current_branch_id()
        if merge and branch_id in self.store.memory_banks:
            self.store = self.banks.update(self.store, branch_id, data, now=now)
        else:
            self.store = self.banks.create(self.store, branch_id, data, now=now)

    def branch_state(self, *, now: datetime | None = None) -> dict[str, Any] | None:
        self.store, bank = self.banks.access(self.store, self._current_branch_id(), now=now)
        return bank.data if bank is not None else None
