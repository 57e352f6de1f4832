from __future__ import annotations

import string
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from storyweave.config.schema import SelectorConfig
from storyweave.domain.clock import days_since, resolve_now
from storyweave.elements.catalog import all_elements, elements_of_type, find_element
from storyweave.elements.models import (
    Character,
    ElementCatalog,
    ElementStatus,
    ElementType,
    ForeshadowingHint,
    Location,
    NarrativeElement,
    PlotTwist,
    StoryObject,
    Theme,
)

_NEVER_REFERENCED_DAYS = 999
_READY_STATUSES = (ElementStatus.UNMET, ElementStatus.INTRODUCED)


def tokenize(text: str) -> set[str]:
    """Lowercase whitespace tokens with surrounding punctuation stripped."""
    tokens = (raw.strip(string.punctuation) for raw in text.lower().split())
    return {token for token in tokens if token}


class SelectionCriteria(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ElementType | None = None
    status: ElementStatus | None = None
    tags: list[str] | None = None
    min_importance: int | None = Field(default=None, ge=1, le=10)
    max_importance: int | None = Field(default=None, ge=1, le=10)
    max_age_days: int | None = Field(default=None, ge=0)
    role: str | None = None
    location_type: str | None = None
    twist_type: str | None = None
    object_type: str | None = None
    theme_type: str | None = None


def _matches_variant(element: NarrativeElement, criteria: SelectionCriteria) -> bool:
    if criteria.role is not None and isinstance(element, Character) and element.role != criteria.role:
        return False
    if (
        criteria.location_type is not None
        and isinstance(element, Location)
        and element.location_type != criteria.location_type
    ):
        return False
    if criteria.twist_type is not None and isinstance(element, PlotTwist) and element.twist_type != criteria.twist_type:
        return False
    if (
        criteria.object_type is not None
        and isinstance(element, StoryObject)
        and element.object_type != criteria.object_type
    ):
        return False
    if criteria.theme_type is not None and isinstance(element, Theme) and element.theme_type != criteria.theme_type:
        return False
    return True


class ElementSelector:
    """Read-only queries over one catalog snapshot."""

    def __init__(
        self,
        catalog: ElementCatalog,
        *,
        now: datetime | None = None,
        config: SelectorConfig | None = None,
    ) -> None:
        self.catalog = catalog
        self.now = resolve_now(now)
        self.config = config or SelectorConfig()

    def _days_since_reference(self, element: NarrativeElement) -> int:
        if element.last_referenced is None:
            return _NEVER_REFERENCED_DAYS
        return days_since(element.last_referenced, self.now)

    def _matches(self, element: NarrativeElement, criteria: SelectionCriteria) -> bool:
        if element.status not in _READY_STATUSES:
            return False
        if criteria.status is not None and element.status != criteria.status:
            return False
        if criteria.min_importance is not None and element.importance < criteria.min_importance:
            return False
        if criteria.max_importance is not None and element.importance > criteria.max_importance:
            return False
        if criteria.tags and not any(tag in element.tags for tag in criteria.tags):
            return False
        if (
            criteria.max_age_days is not None
            and element.last_referenced is not None
            and self._days_since_reference(element) > criteria.max_age_days
        ):
            return False
        return _matches_variant(element, criteria)

    def ready_for_introduction(
        self,
        criteria: SelectionCriteria | None = None,
        limit: int | None = None,
    ) -> list[NarrativeElement]:
        criteria = criteria or SelectionCriteria()
        limit = self.config.ready_limit if limit is None else limit
        if criteria.type is None:
            pool = all_elements(self.catalog)
        else:
            pool = elements_of_type(self.catalog, criteria.type)

        matching = [element for element in pool if self._matches(element, criteria)]
        matching.sort(key=lambda element: -element.importance)
        return matching[: max(limit, 0)]

    def for_reference(self, context_text: str, limit: int = 5) -> list[NarrativeElement]:
        context_tokens = tokenize(context_text)
        if not context_tokens:
            return []

        matching = []
        for element in all_elements(self.catalog):
            if element.status == ElementStatus.UNMET:
                continue
            element_tokens = tokenize(" ".join([element.name, *element.tags, element.description]))
            if context_tokens & element_tokens:
                matching.append(element)

        matching.sort(key=lambda element: (-element.importance, self._days_since_reference(element)))
        return matching[: max(limit, 0)]

    def foreshadowing_opportunities(self, context_text: str) -> list[ForeshadowingHint]:
        context_tokens = tokenize(context_text)
        hints = [
            hint
            for hint in self.catalog.foreshadowing
            if hint.status != "resolved" and context_tokens & tokenize(hint.hint)
        ]
        hints.sort(key=lambda hint: hint.subtlety)
        return hints

    def elements_by_priority(self, element_type: ElementType, min_importance: int = 5) -> list[NarrativeElement]:
        elements = [
            element for element in elements_of_type(self.catalog, element_type) if element.importance >= min_importance
        ]
        elements.sort(key=lambda element: -element.importance)
        return elements

    def related_elements(self, element_id: str) -> list[NarrativeElement]:
        element = find_element(self.catalog, element_id)
        if element is None:
            return []

        if isinstance(element, Character):
            related_ids = element.relationships
        elif isinstance(element, Location):
            related_ids = element.connections
        elif isinstance(element, PlotTwist):
            related_ids = element.setup_required
        elif isinstance(element, Theme):
            related_ids = element.related_elements
        else:
            related_ids = []

        related = (find_element(self.catalog, related_id) for related_id in related_ids)
        return [candidate for candidate in related if candidate is not None]

    def mentioned_unmet(self, text: str) -> list[str]:
        lowered = text.lower()
        return [
            element.id
            for element in all_elements(self.catalog)
            if element.status == ElementStatus.UNMET and element.name.lower() in lowered
        ]

    def _context_line(self, element: NarrativeElement) -> str:
        limit = self.config.description_chars
        description = element.description
        if len(description) > limit:
            description = f"{description[:limit]}..."
        return f"- {element.name}: {description}"

    def abbreviated_context(self, context_text: str, max_elements: int | None = None) -> str:
        max_elements = self.config.context_max_elements if max_elements is None else max_elements
        relevant = self.for_reference(context_text, max_elements)
        ready = self.ready_for_introduction(None, self.config.ready_limit)

        sections: list[str] = []
        if relevant:
            sections.append("Recently mentioned elements:")
            sections.extend(self._context_line(element) for element in relevant)
        if ready:
            if sections:
                sections.append("")
            sections.append("Elements ready for introduction:")
            sections.extend(self._context_line(element) for element in ready)
        return "\n".join(sections)
