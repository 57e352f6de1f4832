from __future__ import annotations

from typing import Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from storyweave.domain.clock import utc_now

FindingType = Literal["character", "location", "timeline", "plot", "world_state", "inventory", "other"]
Severity = Literal["minor", "moderate", "major", "critical"]


class ConsistencyFinding(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: FindingType
    description: str
    severity: Severity
    # Position inside the audited window, oldest node is 0.
    turn_index: int = Field(ge=0)
    node_id: str | None = None
    suggested_fix: str | None = None


class ConsistencyVerdict(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    is_consistent: bool
    findings: list[ConsistencyFinding] = Field(default_factory=list)
    overall_score: int = Field(ge=0, le=100)
    needs_revision: bool
    revision_reason: str | None = None
    window_size: int = Field(default=0, ge=0)
    checked_at: AwareDatetime = Field(default_factory=utc_now)

    def count(self, severity: Severity) -> int:
        return sum(1 for finding in self.findings if finding.severity == severity)
