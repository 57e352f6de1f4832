"""Story element catalog and selection heuristics."""

from storyweave.elements.models import ElementCatalog, ElementStatus, NarrativeElement
from storyweave.elements.selector import ElementSelector, SelectionCriteria

__all__ = ["ElementCatalog", "ElementSelector", "ElementStatus", "NarrativeElement", "SelectionCriteria"]
