from __future__ import annotations

from loguru import logger

from storyweave.utils.logging import setup_logging


def test_setup_logging_injects_default_context() -> None:
    setup_logging("DEBUG")
    captured: list[dict] = []
    sink_id = logger.add(lambda message: captured.append(dict(message.record["extra"])), level="DEBUG")
    try:
        logger.info("plain message")
        logger.bind(component="narrative_store", node_id="narrative_000").info("bound message")
    finally:
        logger.remove(sink_id)

    assert captured[0]["component"] == "-"
    assert captured[0]["trace_id"] == "-"
    assert captured[1]["component"] == "narrative_store"
    assert captured[1]["node_id"] == "narrative_000"
    assert captured[1]["branch_id"] == "-"
