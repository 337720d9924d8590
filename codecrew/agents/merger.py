"""Conflict-aware merging of per-sub-task artifact sets."""

import logging
from typing import Dict, List, Optional, Tuple

from ..core.config import settings
from ..errors import MergeConflictUnresolved
from ..extraction.artifacts import clean_files, normalize_path
from ..gateway.base import InferenceGateway
from ..middleware.metrics import track_merge_conflicts
from ..models import AgentResult, CallOptions, Complexity, FileArtifactSet, Priority
from ..utils.background import run_with_deadline
from ..utils.json_sanitizer import safe_parse_json
from .prompts import build_consolidation_prompt


logger = logging.getLogger(__name__)

NARRATIVE_PATH = "/output.md"

Conflicts = Dict[str, List[str]]
Versions = Dict[str, List[Tuple[str, str]]]


def collect_files(results: List[AgentResult]) -> Tuple[FileArtifactSet, Conflicts]:
    """
    Union the artifact sets of successful results in execution order.

    Returns:
        Tuple of (merged files with last-write-wins applied, conflicts keyed
        by path listing every sub-task that wrote a differing version)
    """
    merged: FileArtifactSet = {}
    owners: Dict[str, str] = {}
    conflicts: Conflicts = {}

    for result in results:
        if not result.success:
            continue
        for path, content in result.files.items():
            if path in merged and owners[path] != result.task_id and merged[path] != content:
                sources = conflicts.setdefault(path, [owners[path]])
                if result.task_id not in sources:
                    sources.append(result.task_id)
            merged[path] = content
            owners[path] = result.task_id

    return merged, conflicts


def conflicting_versions(results: List[AgentResult], conflicts: Conflicts) -> Versions:
    """Every successful sub-task's version of each conflicting path, in execution order."""
    versions: Versions = {path: [] for path in conflicts}
    for result in results:
        if not result.success:
            continue
        for path in versions:
            if path in result.files:
                versions[path].append((result.task_id, result.files[path]))
    return versions


def build_narrative(results: List[AgentResult]) -> str:
    """Combine the outputs of successful results into one markdown document."""
    sections = []
    for result in results:
        if result.success and result.output.strip():
            title = result.capability.value.title() if result.capability else result.task_id
            sections.append(f"## {title}\n\n{result.output.strip()}")
    return "\n\n".join(sections)


def parse_resolved_files(text: str) -> Optional[FileArtifactSet]:
    """Parse a ``{"files": {path: content}}`` consolidation response."""
    data = safe_parse_json(text)
    if not isinstance(data, dict) or not isinstance(data.get("files"), dict):
        return None
    resolved = {
        normalize_path(path): content
        for path, content in data["files"].items()
        if isinstance(path, str) and isinstance(content, str)
    }
    return resolved or None


class ConflictAwareMerger:
    """Merges agent results, consolidating conflicting paths through the gateway."""

    def __init__(self, gateway: Optional[InferenceGateway] = None):
        self.gateway = gateway

    async def consolidate(
        self,
        versions: Versions,
        merged: FileArtifactSet,
        user_id: Optional[str] = None,
    ) -> FileArtifactSet:
        """
        Ask the gateway for a resolved version of every conflicting path.

        Raises:
            MergeConflictUnresolved: If the call fails or its output is not a file map
        """
        if self.gateway is None:
            raise MergeConflictUnresolved(list(versions), "no gateway configured")

        try:
            response = await run_with_deadline(
                self.gateway.call(
                    build_consolidation_prompt(versions, merged),
                    CallOptions(complexity=Complexity.medium, priority=Priority.high, user_id=user_id),
                ),
                settings.GATEWAY_TIMEOUT_SECONDS,
            )
        except Exception as e:
            raise MergeConflictUnresolved(list(versions), str(e) or type(e).__name__) from e

        resolved = parse_resolved_files(response.result)
        if resolved is None:
            raise MergeConflictUnresolved(list(versions), "consolidation output is not a file map")
        return resolved

    async def merge(
        self,
        results: List[AgentResult],
        user_id: Optional[str] = None,
    ) -> Tuple[FileArtifactSet, Conflicts]:
        """
        Merge every result into one project artifact set.

        Args:
            results: Agent results in execution order
            user_id: Owning user, forwarded to the consolidation call

        Returns:
            Tuple of (cleaned merged files, detected conflicts)
        """
        merged, conflicts = collect_files(results)

        if conflicts:
            logger.info(f"Detected {len(conflicts)} conflicting paths: {list(conflicts)}")
            try:
                resolved = await self.consolidate(conflicting_versions(results, conflicts), merged, user_id)
                merged = {**merged, **resolved}
                track_merge_conflicts(len(conflicts), "consolidated")
            except MergeConflictUnresolved as e:
                logger.warning(f"{e}; keeping last-write-wins versions")
                track_merge_conflicts(len(conflicts), "last_write_wins")

        files = clean_files(merged)
        if not files:
            narrative = build_narrative(results)
            if narrative:
                logger.info("No structured files after cleanup, emitting narrative document")
                files = {NARRATIVE_PATH: narrative}

        return files, conflicts
