"""
Pipeline stages of the multi-agent orchestrator.

PLANNING:
- Decomposer: request -> validated TaskPlan of capability sub-tasks

EXECUTION:
- Scheduler: runs parallel groups in order, gated by quota and budget

QUALITY:
- Verifier: bounded check-and-repair loop, single review for other output
- Merger: unions artifact sets and consolidates conflicting paths
"""

from .decomposer import TaskDecomposer, parse_plan, validate_plan
from .merger import ConflictAwareMerger
from .scheduler import ParallelScheduler
from .verifier import SelfHealingVerifier


__all__ = [
    # Planning
    "TaskDecomposer",
    "parse_plan",
    "validate_plan",
    # Execution
    "ParallelScheduler",
    # Quality
    "SelfHealingVerifier",
    "ConflictAwareMerger",
]
