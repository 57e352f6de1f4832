from __future__ import annotations

import base64
import zlib
from typing import Any, Literal

import orjson
from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

MAIN_BRANCH_ID = "main"

BranchImpact = Literal["minor", "moderate", "major"]


class NodeMetadata(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    author: str | None = None
    mood: str | None = None
    location: str | None = None
    characters: list[str] = Field(default_factory=list)
    events: list[str] = Field(default_factory=list)


class NodeDraft(BaseModel):
    """Caller-supplied part of a narrative node."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str = ""
    content: str
    tags: list[str] = Field(default_factory=list)
    metadata: NodeMetadata = NodeMetadata()


class NarrativeNode(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    uri: str
    parent_id: str | None
    branch_id: str
    sequence: int = Field(ge=0)
    title: str
    content: str
    word_count: int = Field(ge=0)
    created_at: AwareDatetime
    updated_at: AwareDatetime
    tags: list[str] = Field(default_factory=list)
    metadata: NodeMetadata = NodeMetadata()


class BranchMetadata(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    reason: str | None = None
    choice: str | None = None
    impact: BranchImpact | None = None


class NarrativeBranch(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    name: str
    description: str | None = None
    # None only for the main branch.
    parent_node_id: str | None
    created_at: AwareDatetime
    is_active: bool = True
    memory_bank_id: str | None = None
    metadata: BranchMetadata = BranchMetadata()


class MemoryBank(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    branch_id: str
    payload: str
    checksum: str
    size: int = Field(ge=0)
    stored_size: int = Field(ge=0)
    last_accessed: AwareDatetime
    compressed: bool = False

    def serialized(self) -> str:
        """The JSON text the checksum and size were computed over."""

        if not self.compressed:
            return self.payload
        return zlib.decompress(base64.b64decode(self.payload)).decode("utf-8")

    @property
    def data(self) -> dict[str, Any]:
        return orjson.loads(self.serialized())


class MemoryStats(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    total_memory_banks: int = Field(default=0, ge=0)
    total_memory_size: int = Field(default=0, ge=0)
    active_memory_banks: int = Field(default=0, ge=0)
    last_cleanup: AwareDatetime | None = None


class StoryMetadata(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    genre: str | None = None
    tone: str | None = None
    themes: list[str] = Field(default_factory=list)
    branching_enabled: bool = True


class NarrativeStore(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    nodes: list[NarrativeNode] = Field(default_factory=list)
    branches: list[NarrativeBranch] = Field(default_factory=list)
    memory_banks: dict[str, MemoryBank] = Field(default_factory=dict)
    current_node_id: str | None = None
    current_branch_id: str | None = None
    main_branch_id: str = MAIN_BRANCH_ID
    total_words: int = Field(default=0, ge=0)
    total_nodes: int = Field(default=0, ge=0)
    last_updated: AwareDatetime
    version: int = Field(default=0, ge=0)
    memory_stats: MemoryStats = MemoryStats()
    metadata: StoryMetadata = StoryMetadata()
