"""Exception taxonomy for the orchestration pipeline.

Fatal errors (``PlanParseError``, ``QuotaExceeded``, ``BudgetExceeded``) abort
the current request. The remaining ones describe degraded outcomes that are
logged and recorded on the result rather than raised past their stage.
"""

from typing import List, Optional


class OrchestrationError(Exception):
    """Base class for pipeline errors."""


class PlanParseError(OrchestrationError):
    """No valid task plan could be recovered from the decomposition output."""


class _LimitExceeded(OrchestrationError):
    def __init__(
        self,
        message: str,
        user_id: str,
        ledger_key: str,
        partial_results: Optional[List] = None,
    ):
        super().__init__(message)
        self.user_id = user_id
        self.ledger_key = ledger_key
        self.partial_results = list(partial_results or [])


class QuotaExceeded(_LimitExceeded):
    """Daily request count is at or above the tier limit."""


class BudgetExceeded(_LimitExceeded):
    """Daily spend is at or above the tier cost ceiling."""


class SubTaskFailure(OrchestrationError):
    """A single sub-task failed; recorded as a failed AgentResult."""

    def __init__(self, task_id: str, message: str):
        super().__init__(f"Sub-task {task_id} failed: {message}")
        self.task_id = task_id


class VerificationUnresolved(OrchestrationError):
    """Repair ceiling reached without a passing validity check."""

    def __init__(self, task_id: str, attempts: int, diagnostics: str):
        super().__init__(
            f"Sub-task {task_id} still failing after {attempts} repair attempts: {diagnostics[:200]}"
        )
        self.task_id = task_id
        self.attempts = attempts
        self.diagnostics = diagnostics


class MergeConflictUnresolved(OrchestrationError):
    """Consolidation failed; merged state falls back to last-write-wins."""

    def __init__(self, paths: List[str], reason: str):
        super().__init__(f"Could not consolidate {len(paths)} conflicting paths: {reason}")
        self.paths = paths
        self.reason = reason


class GatewayError(OrchestrationError):
    """Every configured inference provider failed."""
