"""Lexical scanners over an ordered window of narrative nodes.

Each scanner reads node metadata tags (the timeline scanner also reads the
prose) and returns findings whose ``turn_index`` is the position inside the
window. Scanners are independent and never raise on sparse metadata.
"""

from __future__ import annotations

import re
import string
from dataclasses import dataclass, replace
from typing import Sequence

from storyweave.consistency.models import ConsistencyFinding
from storyweave.narrative.models import NarrativeNode


DEATH_WORDS = ("death", "died")
REVIVAL_WORDS = ("revive", "resurrect")
TRAVEL_WORDS = ("travel", "move", "teleport", "portal")
PLOT_OPEN_WORDS = ("quest", "mission", "goal")
PLOT_RESOLVE_WORDS = ("complete", "finish", "resolve")
PLOT_FILLER_WORDS = {
    "a", "an", "and", "at", "by", "for", "from", "her", "his", "in", "into", "is",
    "its", "of", "on", "or", "that", "the", "their", "this", "to", "was", "with",
}
DESTRUCTION_WORDS = ("destroy", "burn", "collapse")
CONSTRUCTION_WORDS = ("build", "create", "restore")

TIME_PATTERNS = (
    re.compile(r"\b\d+\s+(?:second|minute|hour|day|week|month|year)s?\s+(?:ago|later|before|after)\b"),
    re.compile(r"\b(?:yesterday|today|tomorrow|morning|afternoon|evening|night)\b"),
    re.compile(r"\b(?:dawn|dusk|sunrise|sunset)\b"),
)

DEFAULT_PLOT_OPEN_TURNS = 5
DEFAULT_WORLD_STATE_GAP = 3


def _events(node: NarrativeNode) -> list[str]:
    return [event.lower() for event in node.metadata.events if event and event.strip()]


def _any_event_mentions(events: Sequence[str], words: Sequence[str]) -> bool:
    return any(word in event for event in events for word in words)


def _normalize_name_key(name: str) -> str:
    return name.strip().lower().replace(" ", "")


def scan_characters(nodes: Sequence[NarrativeNode]) -> list[ConsistencyFinding]:
    findings: list[ConsistencyFinding] = []
    dead: set[str] = set()

    for index, node in enumerate(nodes):
        events = _events(node)
        died = _any_event_mentions(events, DEATH_WORDS)
        revived = _any_event_mentions(events, REVIVAL_WORDS)

        for character in node.metadata.characters:
            key = _normalize_name_key(character)
            if not key:
                continue
            if key in dead and not revived:
                findings.append(
                    ConsistencyFinding(
                        type="character",
                        description=f'Character "{character}" reappears after death without revival',
                        severity="critical",
                        turn_index=index,
                        node_id=node.id,
                        suggested_fix=f"Either revive {character} or remove their appearance from this turn",
                    )
                )
            # Reported once; a later appearance is not flagged again.
            dead.discard(key)
            if died and not revived:
                dead.add(key)

    return findings


def scan_locations(nodes: Sequence[NarrativeNode]) -> list[ConsistencyFinding]:
    findings: list[ConsistencyFinding] = []
    last_location: str | None = None

    for index, node in enumerate(nodes):
        location = (node.metadata.location or "").strip()
        if not location:
            continue
        if (
            last_location is not None
            and location != last_location
            and not _any_event_mentions(_events(node), TRAVEL_WORDS)
        ):
            findings.append(
                ConsistencyFinding(
                    type="location",
                    description=f'Location changed from "{last_location}" to "{location}" without travel event',
                    severity="moderate",
                    turn_index=index,
                    node_id=node.id,
                    suggested_fix="Add a travel event or explain how the characters moved between locations",
                )
            )
        last_location = location

    return findings


def scan_timeline(nodes: Sequence[NarrativeNode]) -> list[ConsistencyFinding]:
    findings: list[ConsistencyFinding] = []
    last_seen: dict[str, int] = {}

    for index, node in enumerate(nodes):
        content = node.content.lower()
        for pattern in TIME_PATTERNS:
            for match in pattern.finditer(content):
                phrase = " ".join(match.group(0).split())
                previous = last_seen.get(phrase)
                if previous is not None and index - previous > 1:
                    findings.append(
                        ConsistencyFinding(
                            type="timeline",
                            description=f'Time reference "{phrase}" recurs at turn {index} after turn {previous}',
                            severity="moderate",
                            turn_index=index,
                            node_id=node.id,
                            suggested_fix="Ensure time references are consistent with the story timeline",
                        )
                    )
                last_seen[phrase] = index

    return findings


def _event_tokens(event: str) -> set[str]:
    tokens = (raw.strip(string.punctuation) for raw in event.split())
    return {token for token in tokens if token}


def _significant_tokens(event: str) -> set[str]:
    """Event tokens minus filler words and the plot keywords themselves."""

    return {
        token
        for token in _event_tokens(event)
        if token not in PLOT_FILLER_WORDS
        and not any(word in token for word in (*PLOT_OPEN_WORDS, *PLOT_RESOLVE_WORDS))
    }


@dataclass(frozen=True)
class _PlotThread:
    event: str
    opened_at: int
    node_id: str
    tokens: frozenset[str]
    resolved_at: int | None = None


def scan_plot(
    nodes: Sequence[NarrativeNode],
    *,
    open_turns: int = DEFAULT_PLOT_OPEN_TURNS,
) -> list[ConsistencyFinding]:
    # Insertion order matters; the most recent open thread wins a close.
    threads: dict[str, _PlotThread] = {}

    for index, node in enumerate(nodes):
        for event in _events(node):
            if _any_event_mentions([event], PLOT_RESOLVE_WORDS):
                closing_tokens = _significant_tokens(event)
                for key in reversed(list(threads)):
                    thread = threads[key]
                    if thread.resolved_at is None and closing_tokens & thread.tokens:
                        threads[key] = replace(thread, resolved_at=index)
                        break
            elif _any_event_mentions([event], PLOT_OPEN_WORDS) and event not in threads:
                threads[event] = _PlotThread(
                    event=event,
                    opened_at=index,
                    node_id=node.id,
                    tokens=frozenset(_significant_tokens(event)),
                )

    findings: list[ConsistencyFinding] = []
    for thread in threads.values():
        if thread.resolved_at is None and len(nodes) - thread.opened_at > open_turns:
            findings.append(
                ConsistencyFinding(
                    type="plot",
                    description=f'Plot thread "{thread.event}" was introduced but never resolved',
                    severity="moderate",
                    turn_index=thread.opened_at,
                    node_id=thread.node_id,
                    suggested_fix="Either resolve this plot thread or drop it from the story",
                )
            )
    return findings


def scan_world_state(
    nodes: Sequence[NarrativeNode],
    *,
    gap: int = DEFAULT_WORLD_STATE_GAP,
) -> list[ConsistencyFinding]:
    findings: list[ConsistencyFinding] = []
    destruction_turn: int | None = None
    construction_turn: int | None = None

    for index, node in enumerate(nodes):
        events = _events(node)
        if _any_event_mentions(events, DESTRUCTION_WORDS):
            destruction_turn = index
        elif _any_event_mentions(events, CONSTRUCTION_WORDS):
            construction_turn = index
        else:
            continue

        if destruction_turn is not None and construction_turn is not None:
            if abs(destruction_turn - construction_turn) < gap:
                findings.append(
                    ConsistencyFinding(
                        type="world_state",
                        description="World state shows both destruction and construction in close succession",
                        severity="moderate",
                        turn_index=index,
                        node_id=node.id,
                        suggested_fix="Clarify the world state or explain the rapid change",
                    )
                )

    return findings
