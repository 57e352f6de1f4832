"""Heuristic consistency auditing over recent story turns."""

from storyweave.consistency.auditor import (
    ConsistencyAuditor,
    ConsistencyChecker,
    audit,
    audit_nodes,
    audit_path,
)
from storyweave.consistency.models import ConsistencyFinding, ConsistencyVerdict

__all__ = [
    "ConsistencyAuditor",
    "ConsistencyChecker",
    "ConsistencyFinding",
    "ConsistencyVerdict",
    "audit",
    "audit_nodes",
    "audit_path",
]
