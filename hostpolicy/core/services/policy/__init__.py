"""
Package policy — merge sources, plan changes, apply them per manager.

Public API::

    from hostpolicy.core.services.policy import merge, plan, PolicyExecutor

    policy = merge(local_document, remote_policy)
    report = PolicyExecutor(capabilities, config).apply(policy, cancel=event)
"""

from hostpolicy.core.services.policy.changes import Changes, plan
from hostpolicy.core.services.policy.executor import (
    ApplyOutcome,
    ApplyPhase,
    ManagerReport,
    PolicyExecutor,
    PolicyReport,
    apply_with_repair,
)
from hostpolicy.core.services.policy.merge import ManagerPolicy, merge, split_by_manager

__all__ = [
    "ApplyOutcome",
    "ApplyPhase",
    "Changes",
    "ManagerPolicy",
    "ManagerReport",
    "PolicyExecutor",
    "PolicyReport",
    "apply_with_repair",
    "merge",
    "plan",
    "split_by_manager",
]
