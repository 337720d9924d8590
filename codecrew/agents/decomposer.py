"""Task decomposer: turns a request into a validated TaskPlan."""

import json
import logging
from typing import List, Optional, Tuple

from pydantic import ValidationError

from ..core.config import settings
from ..errors import PlanParseError
from ..gateway.base import InferenceGateway
from ..models import CallOptions, Complexity, Priority, SubTask, TaskPlan
from ..utils.background import run_with_deadline
from ..utils.json_sanitizer import strict_parse_json
from .prompts import build_decomposition_prompt


logger = logging.getLogger(__name__)


def derive_parallel_groups(sub_tasks: List[SubTask]) -> List[List[str]]:
    """
    Partition sub-tasks into dependency levels.

    Level 0 holds tasks without dependencies, level n the tasks whose
    dependencies all sit in levels < n. Dependencies on unknown ids are
    ignored here and reported by ``validate_plan``.

    Raises:
        PlanParseError: If the dependencies form a cycle
    """
    known = {task.id for task in sub_tasks}
    remaining = {task.id: {d for d in task.dependencies if d in known} for task in sub_tasks}
    order = [task.id for task in sub_tasks]
    placed: set = set()
    groups: List[List[str]] = []

    while remaining:
        level = [tid for tid in order if tid in remaining and remaining[tid] <= placed]
        if not level:
            raise PlanParseError(f"Dependency cycle between sub-tasks: {sorted(remaining)}")
        groups.append(level)
        placed.update(level)
        for tid in level:
            del remaining[tid]

    return groups


def validate_plan(plan: TaskPlan) -> Tuple[bool, Optional[str]]:
    """
    Check the structural invariants of a plan.

    Args:
        plan: Plan to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not plan.sub_tasks:
        return False, "Plan has no sub-tasks"

    ids = [task.id for task in plan.sub_tasks]
    duplicates = sorted({tid for tid in ids if ids.count(tid) > 1})
    if duplicates:
        return False, f"Duplicate sub-task ids: {duplicates}"

    seen: set = set()
    for index, group in enumerate(plan.parallel_groups):
        for tid in group:
            if tid not in ids:
                return False, f"Parallel group {index} references unknown sub-task '{tid}'"
            if tid in seen:
                return False, f"Sub-task '{tid}' appears in more than one parallel group"
            seen.add(tid)

    group_of = plan.group_index()
    unscheduled = [tid for tid in ids if tid not in group_of]
    if unscheduled:
        return False, f"Sub-tasks missing from every parallel group: {unscheduled}"

    for task in plan.sub_tasks:
        for dep in task.dependencies:
            if dep not in group_of:
                return False, f"Sub-task '{task.id}' depends on unknown sub-task '{dep}'"
            if group_of[dep] >= group_of[task.id]:
                return False, (
                    f"Sub-task '{task.id}' (group {group_of[task.id]}) depends on "
                    f"'{dep}' (group {group_of[dep]}) which does not run strictly earlier"
                )

    return True, None


def parse_plan(text: str) -> TaskPlan:
    """
    Recover a TaskPlan from model output.

    Tolerates fences, thinking tags, comments, trailing commas and smart
    quotes, ``agent`` or ``capability`` keys and camelCase or snake_case
    fields. Missing ``parallelGroups`` are derived from the dependencies.

    Raises:
        PlanParseError: If no valid plan can be recovered
    """
    try:
        data = strict_parse_json(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise PlanParseError(f"Decomposition output is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise PlanParseError("Decomposition output must be a JSON object")

    raw_tasks = data.get("subTasks", data.get("sub_tasks"))
    if not isinstance(raw_tasks, list) or not raw_tasks:
        raise PlanParseError("Decomposition output has no sub-tasks")

    raw_groups = data.get("parallelGroups", data.get("parallel_groups"))
    groups: List[List[str]] = []
    if isinstance(raw_groups, list):
        for group in raw_groups:
            if isinstance(group, (str, int)):
                group = [group]
            if isinstance(group, list) and group:
                groups.append([str(tid) for tid in group])

    try:
        plan = TaskPlan(
            project_name=str(data.get("projectName") or data.get("project_name") or "project"),
            summary=str(data.get("summary") or ""),
            sub_tasks=raw_tasks,
            parallel_groups=groups,
        )
    except ValidationError as e:
        raise PlanParseError(f"Invalid sub-task in plan: {e.errors()[0]['msg']}") from e

    if not plan.parallel_groups:
        plan = plan.model_copy(update={"parallel_groups": derive_parallel_groups(plan.sub_tasks)})

    is_valid, error = validate_plan(plan)
    if not is_valid:
        raise PlanParseError(error)

    return plan


class TaskDecomposer:
    """Planning-mode decomposition through the inference gateway."""

    def __init__(self, gateway: InferenceGateway):
        self.gateway = gateway

    async def decompose(
        self,
        text: str,
        session_context: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> TaskPlan:
        """
        Decompose a request into a validated plan.

        Args:
            text: Request text
            session_context: Rendered history of earlier requests in the session
            user_id: Owning user, forwarded to the gateway

        Returns:
            TaskPlan whose groups respect every dependency

        Raises:
            PlanParseError: If the model output yields no valid plan
        """
        prompt = build_decomposition_prompt(text, session_context)
        response = await run_with_deadline(
            self.gateway.call(
                prompt,
                CallOptions(complexity=Complexity.medium, priority=Priority.high, user_id=user_id),
            ),
            settings.GATEWAY_TIMEOUT_SECONDS,
        )

        plan = parse_plan(response.result)
        logger.info(
            f"Decomposed request into {len(plan.sub_tasks)} sub-tasks "
            f"across {len(plan.parallel_groups)} groups ({plan.project_name})"
        )
        return plan
