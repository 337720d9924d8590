"""Self-healing verification of generated artifact sets."""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, assert_never

from ..core.config import settings
from ..errors import VerificationUnresolved
from ..extraction.artifacts import extract_files
from ..gateway.base import InferenceGateway
from ..middleware.metrics import track_repair_attempt
from ..models import (
    AgentResult,
    CallOptions,
    Capability,
    Complexity,
    FileArtifactSet,
    Priority,
    SubTask,
    TaskPlan,
    VerificationOutcome,
)
from ..sandbox.checker import ValiditySandbox, ensure_dependencies
from ..utils.background import run_with_deadline
from .prompts import build_fix_prompt, build_review_prompt


logger = logging.getLogger(__name__)

Fixer = Callable[[str], Awaitable[FileArtifactSet]]


class SelfHealingVerifier:
    """
    Verify sub-task output before it is merged.

    Frontend and backend artifact sets go through a bounded check-and-repair
    loop. Design and database output gets a single review pass. Research
    output and failed results are left untouched.
    """

    def __init__(
        self,
        gateway: InferenceGateway,
        sandbox: ValiditySandbox,
        max_attempts: Optional[int] = None,
    ):
        self.gateway = gateway
        self.sandbox = sandbox
        self.max_attempts = max_attempts if max_attempts is not None else settings.MAX_REPAIR_ATTEMPTS

    async def verify_and_fix(
        self,
        files: FileArtifactSet,
        fixer: Fixer,
        description: str = "",
        label: str = "artifacts",
    ) -> VerificationOutcome:
        """
        Check an artifact set and repair it until it passes or attempts run out.

        Args:
            files: Candidate artifact set
            fixer: Callback turning a fix prompt into a replacement artifact set
            description: Task description included in every fix prompt
            label: Name used in logs and metrics

        Returns:
            VerificationOutcome with the best available files; ``attempts``
            counts fixer calls and never exceeds ``max_attempts``
        """
        current = ensure_dependencies(files)
        history: List[str] = []
        attempts = 0

        while True:
            try:
                result = await run_with_deadline(self.sandbox.check(current), settings.SANDBOX_TIMEOUT_SECONDS)
            except Exception as e:
                logger.warning(f"Validity check for {label} failed to run: {e}")
                history.append(f"[sandbox] {e}")
                break

            if result.passed:
                if attempts:
                    logger.info(f"{label} verified after {attempts} repair attempt(s)")
                return VerificationOutcome(files=current, verified=True, attempts=attempts, diagnostics=history)

            history.append(result.diagnostics)
            if attempts >= self.max_attempts:
                break

            attempts += 1
            track_repair_attempt(label)
            logger.info(f"Repair attempt {attempts}/{self.max_attempts} for {label}")
            try:
                fixed = await run_with_deadline(
                    fixer(build_fix_prompt(description, current, result.diagnostics)),
                    settings.GATEWAY_TIMEOUT_SECONDS,
                )
            except Exception as e:
                logger.warning(f"Fix attempt {attempts} for {label} failed: {e}")
                fixed = {}

            if fixed:
                current = fixed

        unresolved = VerificationUnresolved(label, attempts, history[-1] if history else "")
        logger.warning(str(unresolved))
        return VerificationOutcome(files=current, verified=False, attempts=attempts, diagnostics=history)

    def make_fixer(self, user_id: Optional[str] = None) -> Fixer:
        """Fixer backed by the inference gateway."""

        async def fix(prompt: str) -> FileArtifactSet:
            response = await self.gateway.call(
                prompt,
                CallOptions(complexity=Complexity.heavy, priority=Priority.high, user_id=user_id),
            )
            return extract_files(response.result)

        return fix

    async def review(self, task: SubTask, result: AgentResult, user_id: Optional[str] = None) -> AgentResult:
        """Single review pass; reviewed files replace the originals when present."""
        try:
            response = await run_with_deadline(
                self.gateway.call(
                    build_review_prompt(task, result.output),
                    CallOptions(complexity=Complexity.heavy, priority=Priority.high, user_id=user_id),
                ),
                settings.GATEWAY_TIMEOUT_SECONDS,
            )
        except Exception as e:
            logger.warning(f"Review of {task.id} failed, keeping original output: {e}")
            return result

        reviewed = extract_files(response.result)
        if not reviewed:
            return result
        return result.model_copy(update={"files": reviewed, "cost": result.cost + response.cost})

    async def verify_result(self, task: Optional[SubTask], result: AgentResult, user_id: Optional[str] = None) -> AgentResult:
        """Verify one result; an unexpected error keeps it as unverified."""
        if not result.success or task is None:
            return result

        try:
            return await self._verify_capability(task, result, user_id)
        except Exception as e:
            logger.error(f"Verification of {task.id} failed, keeping original output: {e}", exc_info=True)
            return result.model_copy(update={"verified": False})

    async def _verify_capability(self, task: SubTask, result: AgentResult, user_id: Optional[str]) -> AgentResult:
        capability = task.capability
        if capability is Capability.frontend or capability is Capability.backend:
            if not result.files:
                return result
            outcome = await self.verify_and_fix(
                result.files,
                self.make_fixer(user_id),
                description=task.description,
                label=capability.value,
            )
            return result.model_copy(
                update={
                    "files": outcome.files,
                    "verified": outcome.verified,
                    "repair_attempts": outcome.attempts,
                }
            )
        elif capability is Capability.design or capability is Capability.database:
            return await self.review(task, result, user_id)
        elif capability is Capability.research:
            return result
        else:
            assert_never(capability)

    async def verify(self, plan: TaskPlan, results: List[AgentResult], user_id: Optional[str] = None) -> List[AgentResult]:
        """
        Verify every result concurrently.

        Returns:
            Results in their original order
        """
        return list(
            await asyncio.gather(
                *(self.verify_result(plan.get_task(r.task_id), r, user_id) for r in results)
            )
        )
