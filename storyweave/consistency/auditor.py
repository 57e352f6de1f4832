from __future__ import annotations

from datetime import datetime
from typing import Sequence

from loguru import logger
from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from storyweave.config.schema import AuditConfig, ConsistencyCheckerConfig
from storyweave.consistency.models import ConsistencyFinding, ConsistencyVerdict
from storyweave.consistency.scanners import (
    scan_characters,
    scan_locations,
    scan_plot,
    scan_timeline,
    scan_world_state,
)
from storyweave.domain.clock import resolve_now
from storyweave.domain.errors import NotFoundError
from storyweave.narrative.models import NarrativeNode, NarrativeStore
from storyweave.narrative.store import get_node, path, recent_nodes

_log = logger.bind(component="consistency_auditor")


def score_findings(findings: Sequence[ConsistencyFinding], penalties: dict[str, int]) -> int:
    total = sum(penalties.get(finding.type, 0) for finding in findings)
    return max(0, 100 - total)


def revision_decision(
    findings: Sequence[ConsistencyFinding],
    score: int,
    *,
    config: AuditConfig,
    strict_mode: bool = False,
) -> str | None:
    """Return the revision reason, or None when the window is acceptable."""

    critical = sum(1 for finding in findings if finding.severity == "critical")
    major = sum(1 for finding in findings if finding.severity == "major")
    major_limit = 0 if strict_mode else config.max_major_findings
    low_score = score < config.revision_threshold

    if critical == 0 and major <= major_limit and not low_score:
        return None
    reason = f"Found {critical} critical and {major} major inconsistencies"
    if low_score:
        reason += f" (score {score} below {config.revision_threshold})"
    return reason


def audit_nodes(
    nodes: Sequence[NarrativeNode],
    *,
    config: AuditConfig | None = None,
    strict_mode: bool = False,
    now: datetime | None = None,
) -> ConsistencyVerdict:
    """Score an ordered, oldest-first window of nodes."""

    config = config or AuditConfig()
    checked_at = resolve_now(now)
    window = list(nodes)
    if not window:
        return ConsistencyVerdict(
            is_consistent=True,
            overall_score=100,
            needs_revision=False,
            window_size=0,
            checked_at=checked_at,
        )

    findings: list[ConsistencyFinding] = []
    findings.extend(scan_characters(window))
    findings.extend(scan_locations(window))
    findings.extend(scan_timeline(window))
    findings.extend(scan_plot(window, open_turns=config.plot_open_turns))
    findings.extend(scan_world_state(window, gap=config.world_state_gap))

    score = score_findings(findings, config.penalties)
    reason = revision_decision(findings, score, config=config, strict_mode=strict_mode)
    verdict = ConsistencyVerdict(
        is_consistent=not findings,
        findings=findings,
        overall_score=score,
        needs_revision=reason is not None,
        revision_reason=reason,
        window_size=len(window),
        checked_at=checked_at,
    )
    _log.bind(node_id=window[-1].id, branch_id=window[-1].branch_id).debug(
        "Audited window size={} findings={} score={} needs_revision={}",
        len(window),
        len(findings),
        score,
        verdict.needs_revision,
    )
    return verdict


def audit(
    store: NarrativeStore,
    window_size: int = 10,
    *,
    config: AuditConfig | None = None,
    strict_mode: bool = False,
    now: datetime | None = None,
) -> ConsistencyVerdict:
    """Audit the most recent ``window_size`` nodes in append order."""

    return audit_nodes(recent_nodes(store, window_size), config=config, strict_mode=strict_mode, now=now)


def audit_path(
    store: NarrativeStore,
    node_id: str,
    window_size: int = 10,
    *,
    config: AuditConfig | None = None,
    strict_mode: bool = False,
    now: datetime | None = None,
) -> ConsistencyVerdict:
    """Audit the tail of one node's lineage, ignoring sibling branches."""

    if get_node(store, node_id) is None:
        raise NotFoundError("node", node_id)
    lineage = path(store, node_id)
    window = lineage[-window_size:] if window_size > 0 else []
    return audit_nodes(window, config=config, strict_mode=strict_mode, now=now)


class ConsistencyAuditor:
    def __init__(self, config: AuditConfig | None = None, *, strict_mode: bool = False) -> None:
        self.config = config or AuditConfig()
        self.strict_mode = strict_mode

    def audit(
        self,
        store: NarrativeStore,
        window_size: int | None = None,
        *,
        now: datetime | None = None,
    ) -> ConsistencyVerdict:
        size = self.config.window_size if window_size is None else window_size
        return audit(store, size, config=self.config, strict_mode=self.strict_mode, now=now)

    def audit_path(
        self,
        store: NarrativeStore,
        node_id: str,
        window_size: int | None = None,
        *,
        now: datetime | None = None,
    ) -> ConsistencyVerdict:
        size = self.config.window_size if window_size is None else window_size
        return audit_path(store, node_id, size, config=self.config, strict_mode=self.strict_mode, now=now)


class ConsistencyChecker(BaseModel):
    """Checker settings plus a bounded history of recent verdicts."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    check_last_turns: int = Field(default=10, ge=1, le=50)
    strict_mode: bool = False
    history_limit: int = Field(default=10, ge=1)
    last_check: AwareDatetime | None = None
    check_history: list[ConsistencyVerdict] = Field(default_factory=list)

    @classmethod
    def from_config(
        cls,
        checker: ConsistencyCheckerConfig | None = None,
        audit_config: AuditConfig | None = None,
    ) -> "ConsistencyChecker":
        checker = checker or ConsistencyCheckerConfig()
        audit_config = audit_config or AuditConfig()
        return cls(
            enabled=checker.enabled,
            check_last_turns=audit_config.window_size,
            strict_mode=checker.strict_mode,
            history_limit=checker.history_limit,
        )

    def auditor(self, config: AuditConfig | None = None) -> ConsistencyAuditor:
        config = (config or AuditConfig()).model_copy(update={"window_size": self.check_last_turns})
        return ConsistencyAuditor(config, strict_mode=self.strict_mode)

    def record(self, verdict: ConsistencyVerdict) -> "ConsistencyChecker":
        history = [*self.check_history, verdict][-self.history_limit :]
        return self.model_copy(update={"check_history": history, "last_check": verdict.checked_at})
