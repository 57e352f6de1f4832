from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from storyweave.config.schema import AuditConfig
from storyweave.consistency.auditor import (
    ConsistencyAuditor,
    ConsistencyChecker,
    audit,
    audit_path,
    revision_decision,
)
from storyweave.consistency.models import ConsistencyFinding
from storyweave.consistency.scanners import scan_plot, scan_timeline
from storyweave.domain.errors import NotFoundError
from storyweave.narrative.store import append_node, create_store, fork

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _store(*turns: tuple[str, dict]):
    store = create_store(now=NOW)
    for content, metadata in turns:
        store, _ = append_node(store, {"content": content, "metadata": metadata}, now=NOW)
    return store


def test_empty_store_is_perfectly_consistent() -> None:
    verdict = audit(create_store(now=NOW), 10, now=NOW)

    assert verdict.is_consistent is True
    assert verdict.overall_score == 100
    assert verdict.needs_revision is False
    assert verdict.findings == []
    assert verdict.window_size == 0


def test_clean_window_scores_100() -> None:
    store = _store(
        ("The village slept.", {"location": "Millbrook", "characters": ["Elara"]}),
        ("Elara tended the well.", {"location": "Millbrook", "characters": ["Elara", "Borin"]}),
        ("Borin lit the forge.", {"location": "Millbrook", "characters": ["Borin"], "events": ["forge lit"]}),
    )

    verdict = audit(store, 10, now=NOW)

    assert verdict.is_consistent is True
    assert verdict.overall_score == 100
    assert verdict.window_size == 3
    assert verdict.checked_at == NOW


def test_millbrook_to_obsidian_fortress_without_travel() -> None:
    store = _store(
        ("The village slept.", {"location": "Millbrook"}),
        ("Cold stone walls surrounded them.", {"location": "Obsidian Fortress"}),
    )

    verdict = audit(store, 10, now=NOW)

    assert len(verdict.findings) == 1
    finding = verdict.findings[0]
    assert finding.type == "location"
    assert finding.severity == "moderate"
    assert finding.turn_index == 1
    assert finding.node_id == "narrative_001"
    assert verdict.overall_score == 92
    assert verdict.is_consistent is False
    assert verdict.needs_revision is False


def test_travel_event_explains_location_change() -> None:
    store = _store(
        ("The village slept.", {"location": "Millbrook"}),
        ("The portal hummed.", {"location": "Obsidian Fortress", "events": ["Stepped through a Portal"]}),
    )

    assert audit(store, 10, now=NOW).is_consistent is True


def test_elara_reappears_after_death_without_revival() -> None:
    store = _store(
        ("The dragon struck.", {"characters": ["Elara"], "events": ["Elara died in the dragon fire"]}),
        ("Borin mourned.", {"characters": ["Borin"]}),
        ("Elara walked into the hall.", {"characters": ["Elara"]}),
    )

    verdict = audit(store, 10, now=NOW)

    assert [finding.type for finding in verdict.findings] == ["character"]
    finding = verdict.findings[0]
    assert finding.severity == "critical"
    assert finding.turn_index == 2
    assert verdict.needs_revision is True
    assert verdict.revision_reason == "Found 1 critical and 0 major inconsistencies"
    assert verdict.overall_score == 90


def test_revival_tag_allows_return_and_reappearance_reported_once() -> None:
    revived = _store(
        ("The dragon struck.", {"characters": ["Elara"], "events": ["death of Elara"]}),
        ("Light returned.", {"characters": ["Elara"], "events": ["priestess revives Elara"]}),
    )
    assert audit(revived, 10, now=NOW).is_consistent is True

    repeated = _store(
        ("The dragon struck.", {"characters": ["Elara"], "events": ["Elara died"]}),
        ("Elara spoke.", {"characters": ["Elara"]}),
        ("Elara spoke again.", {"characters": ["Elara"]}),
    )
    assert len(audit(repeated, 10, now=NOW).findings) == 1


def test_killing_something_does_not_mark_the_killer_dead() -> None:
    store = _store(
        ("Kael stood over the beast.", {"characters": ["Kael"], "events": ["Kael killed the wolf"]}),
        ("Kael walked on.", {"characters": ["Kael"]}),
    )

    verdict = audit(store, 10, now=NOW)

    assert verdict.findings == []
    assert verdict.needs_revision is False


def test_timeline_flags_non_adjacent_recurrence() -> None:
    store = _store(
        ("At dawn they left.", {}),
        ("The road was long.", {}),
        ("By dawn the camp stirred.", {}),
        ("Another dawn came.", {}),
    )

    verdict = audit(store, 10, now=NOW)

    assert [(finding.type, finding.turn_index) for finding in verdict.findings] == [("timeline", 2)]
    assert verdict.overall_score == 85


def test_timeline_ignores_same_turn_repeats() -> None:
    store = _store(("Dawn after dawn, 3 days later, and 3 days later still.", {}))

    assert scan_timeline(store.nodes) == []


def test_plot_thread_left_open_is_flagged_at_opening() -> None:
    turns = [("Elara swore an oath.", {"events": ["quest: find the sword"]})]
    turns += [(f"Chapter {index}.", {}) for index in range(5)]

    verdict = audit(_store(*turns), 10, now=NOW)

    assert [(finding.type, finding.turn_index) for finding in verdict.findings] == [("plot", 0)]
    assert verdict.overall_score == 88


def test_plot_thread_closed_by_matching_resolution() -> None:
    turns = [("Elara swore an oath.", {"events": ["quest: find the sword"]})]
    turns += [(f"Chapter {index}.", {}) for index in range(3)]
    turns += [("The blade was found.", {"events": ["Completed the sword quest"]})]
    turns += [("Epilogue.", {})]

    store = _store(*turns)

    assert scan_plot(store.nodes) == []
    assert scan_plot(store.nodes[:5], open_turns=1) == []


def test_unrelated_resolution_does_not_close_thread_on_filler_words() -> None:
    turns = [("The king pleaded.", {"events": ["mission: rescue the princess"]})]
    turns += [("Masons worked.", {"events": ["finish the bridge"]})]
    turns += [(f"Chapter {index}.", {}) for index in range(5)]

    verdict = audit(_store(*turns), 10, now=NOW)

    assert [(finding.type, finding.turn_index) for finding in verdict.findings] == [("plot", 0)]
    assert "rescue the princess" in verdict.findings[0].description


def test_plot_thread_within_grace_period_is_not_flagged() -> None:
    turns = [("Elara swore an oath.", {"events": ["mission: guard the gate"]})]
    turns += [(f"Chapter {index}.", {}) for index in range(4)]

    assert audit(_store(*turns), 10, now=NOW).is_consistent is True


def test_world_state_destruction_then_rebuild() -> None:
    store = _store(
        ("Flames everywhere.", {"events": ["the bridge was destroyed"]}),
        ("Hammers rang out.", {"events": ["villagers rebuild the bridge"]}),
    )

    verdict = audit(store, 10, now=NOW)

    assert [(finding.type, finding.turn_index) for finding in verdict.findings] == [("world_state", 1)]
    assert verdict.overall_score == 93


def test_low_score_triggers_revision() -> None:
    locations = ["Millbrook", "Ashen Keep"] * 4
    store = _store(*[(f"Scene {index}.", {"location": location}) for index, location in enumerate(locations[:7])])

    verdict = audit(store, 10, now=NOW)

    assert verdict.overall_score == 52
    assert verdict.needs_revision is True
    assert verdict.revision_reason == "Found 0 critical and 0 major inconsistencies (score 52 below 60)"


def test_window_is_clamped_to_recent_nodes() -> None:
    store = _store(
        ("The village slept.", {"location": "Millbrook"}),
        ("Cold stone walls surrounded them.", {"location": "Obsidian Fortress"}),
    )

    verdict = audit(store, 1, now=NOW)

    assert verdict.window_size == 1
    assert verdict.is_consistent is True


def test_custom_penalties_change_score() -> None:
    store = _store(
        ("The village slept.", {"location": "Millbrook"}),
        ("Cold stone walls surrounded them.", {"location": "Obsidian Fortress"}),
    )

    verdict = audit(store, 10, config=AuditConfig(penalties={"location": 20}), now=NOW)

    assert verdict.overall_score == 80


def test_audit_path_follows_branch_lineage() -> None:
    store = _store(
        ("The village slept.", {"location": "Millbrook"}),
        ("Elara woke.", {"location": "Millbrook"}),
    )
    store, forked = fork(store, "narrative_000", "Detour", "curiosity", "A side road opens.", now=NOW)
    store, _ = append_node(store, {"content": "Ash fell.", "metadata": {"location": "Ashen Keep"}}, branch_id="main", now=NOW)

    branch_verdict = audit_path(store, forked.id, now=NOW)
    global_verdict = audit(store, 10, now=NOW)

    assert branch_verdict.window_size == 2
    assert branch_verdict.is_consistent is True
    assert global_verdict.findings[0].node_id == "narrative_003"
    with pytest.raises(NotFoundError):
        audit_path(store, "narrative_404", now=NOW)


def test_strict_mode_treats_major_findings_as_revision() -> None:
    config = AuditConfig()
    findings = [ConsistencyFinding(type="other", description="Inventory drift", severity="major", turn_index=0)]

    assert revision_decision(findings, 100, config=config) is None
    assert revision_decision(findings, 100, config=config, strict_mode=True) == (
        "Found 0 critical and 1 major inconsistencies"
    )
    assert revision_decision(findings * 3, 100, config=config) == "Found 0 critical and 3 major inconsistencies"


def test_auditor_uses_configured_window() -> None:
    store = _store(
        ("The village slept.", {"location": "Millbrook"}),
        ("Cold stone walls surrounded them.", {"location": "Obsidian Fortress"}),
        ("Silence.", {"location": "Obsidian Fortress"}),
    )

    auditor = ConsistencyAuditor(AuditConfig(window_size=2))

    assert auditor.audit(store, now=NOW).is_consistent is True
    assert auditor.audit(store, 3, now=NOW).overall_score == 92


def test_checker_history_is_capped() -> None:
    checker = ConsistencyChecker(history_limit=3)
    store = _store(("The village slept.", {}))

    for offset in range(5):
        checker = checker.record(audit(store, 10, now=NOW + timedelta(minutes=offset)))

    assert len(checker.check_history) == 3
    assert checker.check_history[0].checked_at == NOW + timedelta(minutes=2)
    assert checker.last_check == NOW + timedelta(minutes=4)


def test_checker_from_config_builds_auditor() -> None:
    checker = ConsistencyChecker.from_config(audit_config=AuditConfig(window_size=4))

    auditor = checker.auditor(AuditConfig(revision_threshold=70))

    assert checker.check_last_turns == 4
    assert auditor.config.window_size == 4
    assert auditor.config.revision_threshold == 70
    with pytest.raises(pydantic.ValidationError):
        ConsistencyChecker(check_last_turns=51)
