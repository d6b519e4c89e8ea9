"""Reconciliation engine components."""

from .classification import classify_entry_type, is_operational_cost
from .flows import FlowConfig, build_flows
from .matcher import DayBucketMatcher
from .splitting import ParentContext, RuleBook, SplitGenerator, resolve_rule
from .session import CommitPlan, MatchSession
from .committer import ReconciliationCommitter
from .service import ReconciliationService

__all__ = [
    "classify_entry_type",
    "is_operational_cost",
    "FlowConfig",
    "build_flows",
    "DayBucketMatcher",
    "ParentContext",
    "RuleBook",
    "SplitGenerator",
    "resolve_rule",
    "CommitPlan",
    "MatchSession",
    "ReconciliationCommitter",
    "ReconciliationService",
]
