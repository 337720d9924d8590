"""Multi-agent orchestration pipeline."""

import logging
import re
import time
from typing import List, Optional

from ..agents.decomposer import TaskDecomposer
from ..agents.merger import NARRATIVE_PATH, ConflictAwareMerger
from ..agents.prompts import build_fast_prompt
from ..agents.scheduler import ParallelScheduler
from ..agents.verifier import SelfHealingVerifier
from ..cache.lexical import ResponseCache
from ..cache.multi_tier import MultiTierCache
from ..cache.persistent import RedisCacheStore, SqlCacheStore
from ..cache.semantic import HashingEmbedder, OpenAIEmbedder, SemanticCache
from ..core.config import settings
from ..extraction.artifacts import clean_files, extract_files
from ..gateway.base import InferenceGateway
from ..gateway.router import build_gateway
from ..middleware.metrics import track_pipeline_completed
from ..models import (
    AgentResult,
    CacheEntry,
    CacheTier,
    CallOptions,
    Complexity,
    ExecutionMode,
    OrchestrationRequest,
    OrchestratorResult,
    Priority,
    ReferenceMaterial,
)
from ..progress import ProgressReporter
from ..quota.ledger import QuotaGuard, SqlQuotaStore
from ..sandbox.checker import ValiditySandbox, build_sandbox
from ..utils.background import run_with_deadline
from ..utils.token_budget import enforce_reference_budget, render_reference
from .session import KnowledgeSource, SessionHistory


logger = logging.getLogger(__name__)

FAST_LEDGER_KEY = "fast"
_WORD = re.compile(r"[a-z0-9]+")


def fast_project_name(text: str) -> str:
    """Slug of the first three words of the request."""
    words = _WORD.findall(text.lower())[:3]
    return "-".join(words) or "fast-project"


class OrchestrationEngine:
    """
    Full request pipeline.

    Flow:
    1. Multi-tier cache lookup (a hit ends the request)
    2. Fast mode: one generation call, extraction and cleanup
    3. Planning mode: decompose -> schedule -> verify -> merge
    4. Write the result to every cache tier
    """

    def __init__(
        self,
        gateway: InferenceGateway,
        sandbox: ValiditySandbox,
        cache: Optional[MultiTierCache] = None,
        quota_guard: Optional[QuotaGuard] = None,
        knowledge: Optional[KnowledgeSource] = None,
        history: Optional[SessionHistory] = None,
    ):
        self.gateway = gateway
        self.cache = cache
        self.quota_guard = quota_guard
        self.knowledge = knowledge
        self.history = history or SessionHistory(max_turns=settings.SESSION_HISTORY_SIZE)

        self.decomposer = TaskDecomposer(gateway)
        self.scheduler = ParallelScheduler(gateway, quota_guard)
        self.verifier = SelfHealingVerifier(gateway, sandbox)
        self.merger = ConflictAwareMerger(gateway)

    async def orchestrate(
        self,
        request: OrchestrationRequest,
        mode: Optional[ExecutionMode] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> OrchestratorResult:
        """
        Run the pipeline for one request.

        Never raises: any failure becomes an unsuccessful result whose summary
        is the error message.

        Args:
            request: Build request
            mode: Overrides ``request.mode`` when given
            progress: Milestone reporter

        Returns:
            OrchestratorResult with the merged files and per-sub-task results
        """
        mode = mode or request.mode
        progress = progress or ProgressReporter()
        start = time.time()
        logger.info(f"Orchestrating {mode.value} request for user {request.user_id}")

        try:
            if mode is ExecutionMode.fast:
                result = await self._run_fast(request, progress)
            else:
                result = await self._run_planning(request, progress)
        except Exception as e:
            logger.error(f"Orchestration failed: {e}", exc_info=True)
            result = OrchestratorResult(
                success=False,
                project_name="error",
                summary=str(e) or type(e).__name__,
                agent_results=getattr(e, "partial_results", []),
            )

        duration = time.time() - start
        result = result.model_copy(update={"total_duration_ms": int(duration * 1000), "mode": mode})
        track_pipeline_completed(mode.value, "success" if result.success else "failed", duration)
        return result

    async def _cached(self, text: str) -> Optional[OrchestratorResult]:
        if self.cache is None:
            return None
        entry = await self.cache.resolve(text)
        if entry is None:
            return None
        logger.info(f"Serving request from the {entry.tier.value} cache tier")
        return OrchestratorResult(
            success=True,
            project_name=entry.project_name or "cached-project",
            summary=entry.summary,
            files=entry.files,
            cache_tier=entry.tier,
        )

    async def _store(self, text: str, result: OrchestratorResult) -> None:
        if self.cache is None:
            return
        await self.cache.store(
            text,
            CacheEntry(
                fingerprint="",
                files=result.files,
                summary=result.summary,
                project_name=result.project_name,
                tier=CacheTier.persistent,
            ),
        )

    async def _reference(self, text: str) -> Optional[ReferenceMaterial]:
        if self.knowledge is None:
            return None
        try:
            return await self.knowledge.retrieve(text)
        except Exception as e:
            logger.warning(f"Reference retrieval failed, continuing without it: {e}")
            return None

    async def _run_fast(self, request: OrchestrationRequest, progress: ProgressReporter) -> OrchestratorResult:
        progress.report(5, "Checking cache")
        cached = await self._cached(request.text)
        if cached is not None:
            progress.report(100, "Served from cache")
            return cached

        if self.quota_guard is not None:
            await self.quota_guard.check(request.user_id, FAST_LEDGER_KEY)

        reference = await self._reference(request.text)
        reference_text = None
        if reference is not None and not reference.is_empty():
            reference_text = render_reference(enforce_reference_budget(reference, settings.REFERENCE_TOKEN_BUDGET))

        progress.report(20, "Generating code")
        prompt = build_fast_prompt(request.text, self.history.render(request.session_id), reference_text)
        start = time.time()
        response = await run_with_deadline(
            self.gateway.call(
                prompt,
                CallOptions(complexity=Complexity.heavy, priority=Priority.high, user_id=request.user_id),
            ),
            settings.GATEWAY_TIMEOUT_SECONDS,
        )
        duration_ms = int((time.time() - start) * 1000)

        if self.quota_guard is not None:
            self.quota_guard.record_usage(request.user_id, FAST_LEDGER_KEY, response.cost)

        progress.report(80, "Extracting files")
        files = clean_files(extract_files(response.result))
        if not files and response.result.strip():
            files = {NARRATIVE_PATH: response.result.strip()}

        summary = f"Generated {len(files)} files"
        result = OrchestratorResult(
            success=bool(files),
            project_name=fast_project_name(request.text),
            summary=summary,
            files=files,
            agent_results=[
                AgentResult(
                    task_id=FAST_LEDGER_KEY,
                    success=True,
                    output=response.result,
                    files=files,
                    duration_ms=duration_ms,
                    cost=response.cost,
                )
            ],
        )

        if result.success:
            await self._store(request.text, result)
            self.history.append(request.session_id, request.text, summary)
        progress.report(100, "Done")
        return result

    async def _run_planning(self, request: OrchestrationRequest, progress: ProgressReporter) -> OrchestratorResult:
        progress.report(5, "Checking cache")
        cached = await self._cached(request.text)
        if cached is not None:
            progress.report(100, "Served from cache")
            return cached

        progress.report(10, "Decomposing request")
        plan = await self.decomposer.decompose(
            request.text,
            self.history.render(request.session_id),
            request.user_id,
        )
        progress.report(
            25,
            f"Plan ready: {len(plan.sub_tasks)} sub-tasks in {len(plan.parallel_groups)} groups",
        )

        reference = await self._reference(request.text)
        results: List[AgentResult] = await self.scheduler.execute(
            plan,
            reference=reference,
            user_id=request.user_id,
            session_id=request.session_id,
            progress=progress,
        )

        progress.report(75, "Verifying output")
        results = await self.verifier.verify(plan, results, request.user_id)

        progress.report(90, "Merging files")
        files, conflicts = await self.merger.merge(results, request.user_id)
        progress.report(95, f"Merge complete: {len(files)} files, {len(conflicts)} conflicts")

        succeeded = sum(1 for r in results if r.success)
        summary = plan.summary or f"Generated {len(files)} files"
        if succeeded < len(results):
            logger.warning(f"{len(results) - succeeded}/{len(results)} sub-tasks failed for {plan.project_name}")

        result = OrchestratorResult(
            success=succeeded > 0 and bool(files),
            project_name=plan.project_name,
            summary=summary,
            files=files,
            agent_results=results,
        )

        if result.success:
            await self._store(request.text, result)
            self.history.append(request.session_id, request.text, summary)
        progress.report(100, "Done")
        return result


def build_persistent_store():
    if settings.CACHE_BACKEND == "redis":
        return RedisCacheStore()
    return SqlCacheStore()


def build_default_engine() -> OrchestrationEngine:
    """Engine wired from settings."""
    if settings.OPENAI_API_KEY:
        embedder = OpenAIEmbedder(settings.OPENAI_API_KEY, settings.OPENAI_BASE_URL, settings.EMBEDDING_MODEL)
    else:
        embedder = HashingEmbedder()

    cache = MultiTierCache(
        lexical=ResponseCache(
            max_size=settings.LEXICAL_MAX_SIZE,
            ttl_minutes=settings.LEXICAL_TTL_MINUTES,
            threshold=settings.LEXICAL_THRESHOLD,
        ),
        persistent=build_persistent_store(),
        semantic=SemanticCache(embedder, max_size=settings.SEMANTIC_MAX_SIZE, threshold=settings.SEMANTIC_THRESHOLD),
        max_age_hours=settings.CACHE_PERSISTENT_MAX_AGE_HOURS,
        min_similarity=settings.CACHE_PERSISTENT_MIN_SIMILARITY,
    )
    return OrchestrationEngine(
        gateway=build_gateway(),
        sandbox=build_sandbox(),
        cache=cache,
        quota_guard=QuotaGuard(SqlQuotaStore()),
    )


_engine: Optional[OrchestrationEngine] = None


def get_engine() -> OrchestrationEngine:
    """Process-wide engine, built on first use."""
    global _engine
    if _engine is None:
        _engine = build_default_engine()
    return _engine
