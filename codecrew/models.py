"""Pydantic models for the multi-agent orchestration pipeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


FileArtifactSet = Dict[str, str]


# Enums
class Capability(str, Enum):
    """Closed set of agent capabilities a sub-task can target."""
    design = "design"
    frontend = "frontend"
    backend = "backend"
    database = "database"
    research = "research"


class Priority(str, Enum):
    """Sub-task priority levels."""
    high = "high"
    medium = "medium"
    low = "low"


class ExecutionMode(str, Enum):
    """Pipeline execution modes."""
    fast = "fast"
    planning = "planning"


class CacheTier(str, Enum):
    """Cache tier a result was served from."""
    persistent = "persistent"
    lexical = "lexical"
    semantic = "semantic"


class Complexity(str, Enum):
    """Complexity hint passed to the inference gateway."""
    light = "light"
    medium = "medium"
    heavy = "heavy"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Request models
class OrchestrationRequest(_CamelModel):
    """A build request. Immutable once submitted."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    text: str = Field(..., min_length=1)
    mode: ExecutionMode = ExecutionMode.planning
    user_id: str = "anon"
    session_id: Optional[str] = None


# Plan models
class SubTask(_CamelModel):
    """One unit of planned work assigned to a single capability."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1)
    capability: Capability = Field(..., validation_alias=AliasChoices("capability", "agent"))
    description: str = ""
    dependencies: List[str] = Field(default_factory=list)
    priority: Priority = Priority.medium

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("capability", mode="before")
    @classmethod
    def _normalize_capability(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in Priority.__members__:
            return value.strip().lower()
        return Priority.medium

    @field_validator("dependencies", mode="before")
    @classmethod
    def _coerce_dependencies(cls, value: Any) -> Any:
        if value is None:
            return []
        return [str(v) for v in value]


class TaskPlan(_CamelModel):
    """Decomposed request: sub-tasks plus their sequential parallel groups."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    project_name: str = "project"
    summary: str = ""
    sub_tasks: List[SubTask] = Field(default_factory=list)
    parallel_groups: List[List[str]] = Field(default_factory=list)

    def get_task(self, task_id: str) -> Optional[SubTask]:
        for task in self.sub_tasks:
            if task.id == task_id:
                return task
        return None

    def group_index(self) -> Dict[str, int]:
        """Map each sub-task id to the index of the group it runs in."""
        return {
            task_id: index
            for index, group in enumerate(self.parallel_groups)
            for task_id in group
        }


# Result models
class AgentResult(_CamelModel):
    """Outcome of one executed sub-task."""
    task_id: str
    capability: Optional[Capability] = None
    success: bool
    output: str = ""
    files: FileArtifactSet = Field(default_factory=dict)
    duration_ms: int = 0
    verified: Optional[bool] = None
    repair_attempts: int = 0
    cost: float = 0.0


class OrchestratorResult(_CamelModel):
    """Response of the pipeline entry point."""
    success: bool
    project_name: str
    summary: str
    files: FileArtifactSet = Field(default_factory=dict)
    agent_results: List[AgentResult] = Field(default_factory=list)
    total_duration_ms: int = 0
    mode: Optional[ExecutionMode] = None
    cache_tier: Optional[CacheTier] = None


class CacheEntry(_CamelModel):
    """A previously computed result, keyed by request fingerprint."""
    fingerprint: str
    files: FileArtifactSet
    summary: str = ""
    project_name: str = ""
    tier: CacheTier = CacheTier.persistent
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# Collaborator contracts
class CallOptions(BaseModel):
    """Options for a single inference gateway call."""
    complexity: Complexity = Complexity.medium
    priority: Priority = Priority.medium
    model: Optional[str] = None
    user_id: Optional[str] = None


class GatewayResponse(BaseModel):
    """Inference gateway response."""
    result: str
    model: str = ""
    cost: float = 0.0
    tier: str = "default"
    duration: float = 0.0  # milliseconds


class CheckResult(BaseModel):
    """Validity-check sandbox verdict."""
    passed: bool
    diagnostics: str = ""


class UsageSnapshot(BaseModel):
    """Usage of one (user, ledger key, day) triple."""
    count: int = 0
    cost_usd: float = 0.0


class ReferenceMaterial(BaseModel):
    """Externally retrieved knowledge injected into sub-task prompts."""
    examples: List[str] = Field(default_factory=list)
    best_practices: List[str] = Field(default_factory=list)
    docs: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.examples or self.best_practices or self.docs)


@dataclass
class VerificationOutcome:
    """Result of the self-healing loop for one artifact set."""
    files: FileArtifactSet
    verified: bool
    attempts: int = 0
    diagnostics: List[str] = field(default_factory=list)
