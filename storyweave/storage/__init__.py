"""Snapshot persistence for stories and element catalogs."""

from storyweave.storage.snapshots import Snapshot, load_snapshot, save_snapshot

__all__ = ["Snapshot", "load_snapshot", "save_snapshot"]
