"""
Parallel execution scheduler.

Walks a TaskPlan group by group. Sub-tasks of one group run concurrently and
the whole group settles before the next one starts, so context for a group is
built only from results of earlier groups.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, assert_never

from ..core.config import settings
from ..errors import BudgetExceeded, QuotaExceeded, SubTaskFailure
from ..extraction.artifacts import extract_files
from ..gateway.base import InferenceGateway
from ..middleware.metrics import track_subtask_completed
from ..models import (
    AgentResult,
    CallOptions,
    Capability,
    Complexity,
    Priority,
    ReferenceMaterial,
    SubTask,
    TaskPlan,
)
from ..progress import ProgressReporter
from ..quota.ledger import ANONYMOUS_USER, QuotaGuard
from ..utils.background import run_with_deadline
from ..utils.token_budget import enforce_reference_budget, render_reference
from .prompts import build_agent_prompt


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapabilityProfile:
    """How the scheduler treats one capability."""
    uses_reference: bool
    produces_code: bool


def capability_profile(capability: Capability) -> CapabilityProfile:
    if capability is Capability.design:
        return CapabilityProfile(uses_reference=False, produces_code=True)
    elif capability is Capability.frontend:
        return CapabilityProfile(uses_reference=True, produces_code=True)
    elif capability is Capability.backend:
        return CapabilityProfile(uses_reference=True, produces_code=True)
    elif capability is Capability.database:
        return CapabilityProfile(uses_reference=True, produces_code=True)
    elif capability is Capability.research:
        return CapabilityProfile(uses_reference=False, produces_code=False)
    else:
        assert_never(capability)


def build_context_digest(results: List[AgentResult], max_chars: int = 200) -> str:
    """One line per settled successful result: ``[capability]: output prefix``."""
    lines = []
    for result in results:
        if not result.success:
            continue
        label = result.capability.value if result.capability else result.task_id
        lines.append(f"[{label}]: {result.output[:max_chars]}")
    return "\n".join(lines)


class ParallelScheduler:
    """Executes a plan's parallel groups against the inference gateway."""

    def __init__(
        self,
        gateway: InferenceGateway,
        quota_guard: Optional[QuotaGuard] = None,
        digest_chars: Optional[int] = None,
        reference_budget: Optional[int] = None,
    ):
        self.gateway = gateway
        self.quota_guard = quota_guard
        self.digest_chars = digest_chars or settings.CONTEXT_DIGEST_CHARS
        self.reference_budget = reference_budget or settings.REFERENCE_TOKEN_BUDGET

    async def execute(
        self,
        plan: TaskPlan,
        reference: Optional[ReferenceMaterial] = None,
        user_id: str = ANONYMOUS_USER,
        session_id: Optional[str] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> List[AgentResult]:
        """
        Run every group of the plan in order.

        Args:
            plan: Validated task plan
            reference: Retrieved knowledge for code-producing sub-tasks
            user_id: Owning user, checked against the quota ledger
            session_id: Session the request belongs to
            progress: Milestone reporter

        Returns:
            One AgentResult per sub-task, in group order

        Raises:
            QuotaExceeded: A sub-task was over the daily request quota
            BudgetExceeded: A sub-task was over the daily cost ceiling
        """
        results: List[AgentResult] = []
        reference_text = ""
        if reference is not None and not reference.is_empty():
            reference_text = render_reference(enforce_reference_budget(reference, self.reference_budget))

        total = len(plan.parallel_groups)
        for index, group in enumerate(plan.parallel_groups):
            tasks = [plan.get_task(tid) for tid in group]
            names = ", ".join(task.capability.value for task in tasks)
            if progress is not None:
                progress.report(30 + index * 40 / max(total, 1), f"Running group {index + 1}/{total}: {names}")
            logger.info(f"Session {session_id}: group {index + 1}/{total} with {len(tasks)} sub-tasks ({names})")

            digest = build_context_digest(results, self.digest_chars)
            outcomes = await asyncio.gather(
                *(self._run_subtask(task, digest, reference_text, user_id) for task in tasks),
                return_exceptions=True,
            )

            rejection: Optional[Exception] = None
            for task, outcome in zip(tasks, outcomes):
                if isinstance(outcome, (QuotaExceeded, BudgetExceeded)):
                    rejection = rejection or outcome
                elif isinstance(outcome, Exception):
                    failure = SubTaskFailure(task.id, str(outcome) or type(outcome).__name__)
                    logger.error(f"{failure} before reaching the gateway", exc_info=outcome)
                    track_subtask_completed(task.capability.value, False, 0.0)
                    results.append(
                        AgentResult(task_id=task.id, capability=task.capability, success=False, output=str(failure))
                    )
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.append(outcome)

            if rejection is not None:
                rejection.partial_results = list(results)
                logger.warning(f"Scheduling aborted in group {index + 1}: {rejection}")
                raise rejection

        return results

    def _build_prompt(self, task: SubTask, digest: str, reference_text: str) -> str:
        context = digest
        if reference_text and capability_profile(task.capability).uses_reference:
            context = f"[REFERENCE CONTEXT]\n{reference_text}\n\n{digest}".rstrip()
        return build_agent_prompt(task, context)

    async def _run_subtask(self, task: SubTask, digest: str, reference_text: str, user_id: str) -> AgentResult:
        ledger_key = task.capability.value
        if self.quota_guard is not None:
            await self.quota_guard.check(user_id, ledger_key)

        options = CallOptions(
            complexity=Complexity.heavy if task.priority is Priority.high else Complexity.medium,
            priority=task.priority,
            user_id=user_id,
        )
        start = time.time()
        try:
            response = await run_with_deadline(
                self.gateway.call(self._build_prompt(task, digest, reference_text), options),
                settings.GATEWAY_TIMEOUT_SECONDS,
            )
        except Exception as e:
            duration = time.time() - start
            failure = SubTaskFailure(task.id, str(e) or type(e).__name__)
            logger.error(str(failure))
            track_subtask_completed(ledger_key, False, duration)
            return AgentResult(
                task_id=task.id,
                capability=task.capability,
                success=False,
                output=str(failure),
                duration_ms=int(duration * 1000),
            )

        duration = time.time() - start
        files = extract_files(response.result)
        if not files and capability_profile(task.capability).produces_code:
            logger.warning(f"Sub-task {task.id} ({ledger_key}) produced no files")

        if self.quota_guard is not None:
            self.quota_guard.record_usage(user_id, ledger_key, response.cost)
        track_subtask_completed(ledger_key, True, duration)

        return AgentResult(
            task_id=task.id,
            capability=task.capability,
            success=True,
            output=response.result,
            files=files,
            duration_ms=int(duration * 1000),
            cost=response.cost,
        )
