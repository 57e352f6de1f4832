from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, TypeAdapter

from storyweave.domain.clock import utc_now
from storyweave.domain.errors import InvalidTransitionError, ValidationError

ElementType = Literal["character", "location", "plot_twist", "object", "theme"]
StoryPhase = Literal["setup", "development", "climax", "resolution"]

CATALOG_VERSION = "1.0.0"


class ElementStatus(str, Enum):
    UNMET = "unmet"
    INTRODUCED = "introduced"
    DEVELOPED = "developed"
    RESOLVED = "resolved"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = (
    ElementStatus.UNMET,
    ElementStatus.INTRODUCED,
    ElementStatus.DEVELOPED,
    ElementStatus.RESOLVED,
)


def advance_status(current: ElementStatus | str, requested: ElementStatus | str) -> ElementStatus:
    """Single entry point for lifecycle moves; same-status refreshes are allowed."""

    try:
        current_status = ElementStatus(current)
        requested_status = ElementStatus(requested)
    except ValueError as exc:
        raise ValidationError(f"Unknown element status: {exc}") from exc
    if requested_status.rank < current_status.rank:
        raise InvalidTransitionError(current_status.value, requested_status.value)
    return requested_status


class _ElementBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    status: ElementStatus = ElementStatus.UNMET
    importance: int = Field(default=5, ge=1, le=10)
    tags: list[str] = Field(default_factory=list)
    last_referenced: AwareDatetime | None = None
    created_at: AwareDatetime = Field(default_factory=utc_now)


class Character(_ElementBase):
    type: Literal["character"] = "character"
    role: Literal["protagonist", "antagonist", "supporting", "minor", "background"] = "supporting"
    introduction_hints: list[str] = Field(default_factory=list)
    relationships: list[str] = Field(default_factory=list)
    personality: str = ""
    motivation: str = ""


class Location(_ElementBase):
    type: Literal["location"] = "location"
    location_type: Literal["setting", "landmark", "secret", "historical", "mystical"] = "setting"
    atmosphere: str = ""
    connections: list[str] = Field(default_factory=list)
    significance: str = ""
    accessibility: Literal["public", "restricted", "hidden", "legendary"] = "public"


class PlotTwist(_ElementBase):
    type: Literal["plot_twist"] = "plot_twist"
    twist_type: Literal["revelation", "betrayal", "discovery", "tragedy", "victory", "mystery"] = "revelation"
    setup_required: list[str] = Field(default_factory=list)
    impact: int = Field(default=5, ge=1, le=10)
    timing: Literal["early", "mid", "late", "climax"] = "mid"
    foreshadowing_hints: list[str] = Field(default_factory=list)


class StoryObject(_ElementBase):
    type: Literal["object"] = "object"
    object_type: Literal["weapon", "tool", "artifact", "document", "treasure", "mystery"] = "artifact"
    properties: list[str] = Field(default_factory=list)
    location: str = ""
    significance: str = ""


class Theme(_ElementBase):
    type: Literal["theme"] = "theme"
    theme_type: Literal["moral", "philosophical", "emotional", "social", "political"] = "moral"
    expression: str = ""
    related_elements: list[str] = Field(default_factory=list)


NarrativeElement = Annotated[
    Union[Character, Location, PlotTwist, StoryObject, Theme],
    Field(discriminator="type"),
]

ELEMENT_ADAPTER: TypeAdapter[NarrativeElement] = TypeAdapter(NarrativeElement)

LIST_FOR_TYPE: dict[str, str] = {
    "character": "characters",
    "location": "locations",
    "plot_twist": "plot_twists",
    "object": "objects",
    "theme": "themes",
}
ELEMENT_LISTS: tuple[str, ...] = tuple(LIST_FOR_TYPE.values())


class StoryThread(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    title: str
    description: str = ""
    status: Literal["active", "paused", "resolved", "abandoned"] = "active"
    priority: int = Field(default=5, ge=1, le=10)
    related_elements: list[str] = Field(default_factory=list)
    last_progress: str | None = None
    next_steps: list[str] = Field(default_factory=list)
    created_at: AwareDatetime = Field(default_factory=utc_now)
    updated_at: AwareDatetime = Field(default_factory=utc_now)


HintStatus = Literal["planned", "planted", "recalled", "resolved"]
_HINT_ORDER: tuple[str, ...] = ("planned", "planted", "recalled", "resolved")


def advance_hint_status(current: str, requested: str) -> str:
    if requested not in _HINT_ORDER:
        raise ValidationError(f"Unknown hint status: {requested!r}")
    if _HINT_ORDER.index(requested) < _HINT_ORDER.index(current):
        raise InvalidTransitionError(current, requested)
    return requested


class ForeshadowingHint(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    target_element_id: str
    hint: str
    subtlety: int = Field(default=5, ge=1, le=10)
    status: HintStatus = "planned"
    timing: Literal["immediate", "soon", "later", "much_later"] = "soon"
    context: str = ""
    created_at: AwareDatetime = Field(default_factory=utc_now)


class CatalogMetadata(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    total_elements: int = Field(default=0, ge=0)
    last_updated: AwareDatetime = Field(default_factory=utc_now)
    story_phase: StoryPhase = "setup"
    active_threads: int = Field(default=0, ge=0)
    pending_introductions: int = Field(default=0, ge=0)
    catalog_version: str = CATALOG_VERSION
    genre: str | None = None
    tone: str | None = None


class ElementCatalog(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    characters: list[Character] = Field(default_factory=list)
    locations: list[Location] = Field(default_factory=list)
    plot_twists: list[PlotTwist] = Field(default_factory=list)
    objects: list[StoryObject] = Field(default_factory=list)
    themes: list[Theme] = Field(default_factory=list)
    story_threads: list[StoryThread] = Field(default_factory=list)
    foreshadowing: list[ForeshadowingHint] = Field(default_factory=list)
    metadata: CatalogMetadata = Field(default_factory=CatalogMetadata)
