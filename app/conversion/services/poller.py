"""
StatusPoller: drives one conversion task to a terminal state.

Each tick is one vendor status call plus every write it triggers, fully
finished before the next tick is scheduled:

    pending/processing --(vendor processing)--> sleep, attempts += 1
                       --(vendor succeeded)---> downloading -> persist -> link
                       --(vendor failed)------> failed
                       --(budget exhausted)---> timed_out

Network errors talking to the vendor use the same interval and count
against the same attempt budget. A failed download or figurine link after
a vendor success never turns the task into a failure; it is reported as a
degraded PollOutcome instead.
"""

from __future__ import annotations

import asyncio
import inspect
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, Optional, Union

from loguru import logger

from forge_core.config import settings
from forge_core.conversions.models import (
    ConversionTask,
    DegradedReason,
    DownloadStatus,
    OutcomeKind,
    PollOutcome,
    StatusReport,
    TaskStatus,
)
from forge_core.conversions.progress import ProgressScale, ProgressTracker
from forge_core.domain.exceptions import (
    ConversionFailedError,
    ConversionTimeoutError,
    DownloadFailedError,
    MissingArtifactError,
    PollerConflictError,
    ReconciliationError,
    TaskNotFoundError,
)
from forge_core.runtime import RetryableError, RetryPolicy, RunContext, ServiceError, TTLCache

from app.conversion.protocols import JobClient, TaskStore
from app.conversion.services.artifact_store import ArtifactStore, PersistResult
from app.conversion.services.reconciler import FigurineReconciler
from app.conversion.services.vendor_client import VendorStatus

ProgressCallback = Callable[[StatusReport], Union[None, Awaitable[None]]]
Sleeper = Callable[[float], Awaitable[Any]]


class PollerRegistry:
    """
    Tracks the active poll loop per task id.

    Starting a second loop for a task that already has one raises
    PollerConflictError; the caller must cancel the first loop and let it
    exit before starting another.
    """

    def __init__(self) -> None:
        self._active: dict[str, asyncio.Event] = {}

    def __len__(self) -> int:
        return len(self._active)

    def is_active(self, task_id: str) -> bool:
        return task_id in self._active

    @contextmanager
    def claim(self, task_id: str, cancel: asyncio.Event) -> Iterator[asyncio.Event]:
        if task_id in self._active:
            raise PollerConflictError(task_id)
        self._active[task_id] = cancel
        try:
            yield cancel
        finally:
            if self._active.get(task_id) is cancel:
                del self._active[task_id]

    def cancel(self, task_id: str) -> bool:
        """Signal the active loop for `task_id` to stop. Returns False if none."""
        event = self._active.get(task_id)
        if event is None:
            return False
        event.set()
        return True

    def cancel_all(self) -> None:
        for event in self._active.values():
            event.set()


class _LoopState:
    """Mutable per-loop bookkeeping."""

    def __init__(self, task: ConversionTask, scale: ProgressScale, cancel: asyncio.Event):
        self.task = task
        self.attempts = task.attempts
        self.tracker = ProgressTracker(max(task.progress_percent, scale.submitted))
        self.cancel = cancel
        self.superseded = False
        self.context = RunContext.for_task(task.task_id, task.owner_id)

    @property
    def stopped(self) -> bool:
        return self.cancel.is_set() or self.superseded


class StatusPoller:
    """
    Polls the vendor for one task at a time and finalizes successful tasks.

    Collaborators are injected; `sleep` is awaited between ticks so tests
    can drive the loop without real delays.

    Usage:
        poller = StatusPoller(vendor, ledger, artifact_store, reconciler)
        outcome = await poller.poll(task_id, on_progress=print)
    """

    def __init__(
        self,
        vendor: JobClient,
        ledger: TaskStore,
        artifact_store: ArtifactStore,
        reconciler: FigurineReconciler,
        policy: RetryPolicy | None = None,
        sleep: Sleeper = asyncio.sleep,
        progress: ProgressScale | None = None,
        cache: TTLCache[str, StatusReport] | None = None,
        registry: PollerRegistry | None = None,
    ):
        self.vendor = vendor
        self.ledger = ledger
        self.artifact_store = artifact_store
        self.reconciler = reconciler
        self.policy = policy or RetryPolicy.fixed_interval(
            settings.POLL_INTERVAL_SECONDS, settings.POLL_MAX_ATTEMPTS
        )
        self._sleep = sleep
        self.scale = progress or ProgressScale.from_settings()
        self.cache = cache
        self.registry = registry or PollerRegistry()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def poll(
        self,
        task_id: str,
        on_progress: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> PollOutcome:
        """
        Poll until the task is terminal, cancelled or out of budget.

        A task that is already terminal in the ledger is not polled again;
        its stored outcome is returned (finishing persistence first if a
        previous loop stopped between vendor success and linking).

        Returns:
            PollOutcome: SUCCEEDED, DEGRADED or CANCELLED.

        Raises:
            TaskNotFoundError: Unknown task id.
            PollerConflictError: Another loop is active for this task.
            ConversionFailedError: The vendor failed the job.
            MissingArtifactError: The vendor succeeded without a model URL.
            ConversionTimeoutError: The attempt budget ran out.
        """
        task = self._load(task_id)
        cancel = cancel or asyncio.Event()

        with self.registry.claim(task_id, cancel):
            state = _LoopState(task, self.scale, cancel)
            if task.is_terminal:
                return await self._settle(state, on_progress)
            logger.info(f"[{task_id}] Polling started (attempt {state.attempts}/{self.policy.max_attempts})")
            return await self._run(state, on_progress)

    async def resume(
        self,
        owner_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, Union[PollOutcome, ServiceError]]:
        """
        Re-attach poll loops to every stored unfinished task.

        Loops run concurrently, one per task. Each task's PollOutcome, or
        the ServiceError that ended it, is returned keyed by task id.
        """
        tasks = self.ledger.list_unfinished(owner_id)
        if not tasks:
            logger.info("No unfinished conversion tasks to resume")
            return {}

        logger.info(f"Resuming {len(tasks)} unfinished conversion task(s)")
        results = await asyncio.gather(
            *(self.poll(task.task_id, on_progress=on_progress) for task in tasks),
            return_exceptions=True,
        )

        outcomes: dict[str, Union[PollOutcome, ServiceError]] = {}
        for task, result in zip(tasks, results):
            if isinstance(result, BaseException) and not isinstance(result, ServiceError):
                raise result
            outcomes[task.task_id] = result
        return outcomes

    async def check_once(self, task_id: str, refresh: bool = False) -> StatusReport:
        """
        Return the current status of a task, ticking the vendor at most once.

        A fresh cached report is returned as-is unless `refresh` is set.
        Terminal tasks and tasks with an active loop are answered from the
        ledger. Otherwise one vendor call is made and applied without
        sleeping and without consuming the attempt budget; a vendor success
        is finalized in the same call.
        """
        if self.cache is not None and not refresh:
            cached = self.cache.get(task_id)
            if cached is not None:
                return cached

        task = self._load(task_id)
        if self.registry.is_active(task_id) or self._is_settled(task):
            return self._remember(task.to_report())

        with self.registry.claim(task_id, asyncio.Event()) as cancel:
            state = _LoopState(task, self.scale, cancel)
            try:
                if task.is_terminal:
                    await self._settle(state, None)
                else:
                    await self._tick(state, None, count_attempt=False)
            except RetryableError as e:
                logger.warning(f"[{task_id}] Status check could not reach vendor: {e}")
            except (ConversionFailedError, MissingArtifactError) as e:
                logger.info(f"[{task_id}] Status check found a failed task: {e}")
            return self._remember(state.task.to_report())

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(self, state: _LoopState, on_progress: ProgressCallback | None) -> PollOutcome:
        while True:
            if state.stopped:
                return self._cancelled(state)

            outcome = await self._tick(state, on_progress, count_attempt=True)
            if outcome is not None:
                return outcome

            if state.stopped:
                return self._cancelled(state)

            if self.policy.is_exhausted(state.attempts):
                await self._time_out(state, on_progress)

            await self._sleep(self.policy.calculate_delay(state.attempts))

    async def _tick(
        self,
        state: _LoopState,
        on_progress: ProgressCallback | None,
        count_attempt: bool,
    ) -> Optional[PollOutcome]:
        """One vendor call and its writes. Returns an outcome once terminal."""
        task = state.task
        try:
            vendor_status = await self.vendor.get_status(task.kind, task.task_id, state.context)
        except RetryableError as e:
            if count_attempt:
                state.attempts += 1
            logger.warning(
                f"[{task.task_id}] Transient vendor error "
                f"(attempt {state.attempts}/{self.policy.max_attempts}): {e}"
            )
            if not state.stopped:
                await self._record(state, task.status, on_progress)
            return None

        if count_attempt:
            state.attempts += 1
        if state.stopped:
            return None

        if vendor_status.status == TaskStatus.SUCCEEDED:
            return await self._succeed(state, vendor_status, on_progress)

        if vendor_status.status == TaskStatus.FAILED:
            message = vendor_status.error_message or "Vendor reported failure"
            await self._record(state, TaskStatus.FAILED, on_progress, error=message)
            logger.error(f"[{task.task_id}] Conversion failed: {message}")
            raise ConversionFailedError(task.task_id, vendor_status.error_message)

        state.tracker.advance(self.scale.vendor(vendor_status.progress))
        await self._record(state, TaskStatus.PROCESSING, on_progress)
        return None

    async def _time_out(self, state: _LoopState, on_progress: ProgressCallback | None) -> None:
        error = ConversionTimeoutError(state.task.task_id, state.attempts)
        await self._record(state, TaskStatus.TIMED_OUT, on_progress, error=error.message_safe)
        logger.warning(f"[{state.task.task_id}] Polling budget exhausted after {state.attempts} attempts")
        raise error

    async def _succeed(
        self,
        state: _LoopState,
        vendor_status: VendorStatus,
        on_progress: ProgressCallback | None,
    ) -> PollOutcome:
        task_id = state.task.task_id
        if not vendor_status.model_url:
            error = MissingArtifactError(task_id)
            await self._record(state, TaskStatus.FAILED, on_progress, error=error.message_safe)
            logger.error(f"[{task_id}] {error.message_safe}")
            raise error

        state.tracker.advance(self.scale.downloading)
        await self._record(
            state,
            TaskStatus.SUCCEEDED,
            on_progress,
            model_artifact_url=vendor_status.model_url,
            thumbnail_artifact_url=vendor_status.thumbnail_url,
            download_status=DownloadStatus.DOWNLOADING,
        )
        logger.info(f"[{task_id}] Vendor finished, persisting artifacts")
        return await self._persist(state, on_progress)

    # ------------------------------------------------------------------
    # Finalization after vendor success
    # ------------------------------------------------------------------

    async def _settle(self, state: _LoopState, on_progress: ProgressCallback | None) -> PollOutcome:
        """Outcome for a task that was already terminal when loaded."""
        task = state.task
        if task.status == TaskStatus.FAILED:
            raise ConversionFailedError(task.task_id, task.error)
        if task.status == TaskStatus.TIMED_OUT:
            raise ConversionTimeoutError(task.task_id, task.attempts)

        if task.download_status == DownloadStatus.FAILED:
            return self._degraded(state, DegradedReason.DOWNLOAD_FAILED, "Artifact download failed")
        if task.download_status == DownloadStatus.COMPLETED and task.persisted_model_url:
            persisted = PersistResult(
                model_url=task.persisted_model_url,
                thumbnail_url=task.persisted_thumbnail_url,
            )
            return await self._link(state, persisted, on_progress)

        logger.info(f"[{task.task_id}] Resuming interrupted artifact persistence")
        return await self._persist(state, on_progress)

    async def _persist(self, state: _LoopState, on_progress: ProgressCallback | None) -> PollOutcome:
        task = state.task
        if state.stopped:
            return self._cancelled(state)

        if task.download_status == DownloadStatus.PENDING:
            await self._record_download(state, DownloadStatus.DOWNLOADING, on_progress)

        try:
            persisted = await self.artifact_store.persist(
                task.owner_id,
                task.task_id,
                task.model_artifact_url,
                task.thumbnail_artifact_url,
            )
        except DownloadFailedError as e:
            state.tracker.advance(self.scale.complete)
            await self._record_download(state, DownloadStatus.FAILED, on_progress)
            logger.warning(f"[{task.task_id}] Falling back to vendor URL: {e.message_safe}")
            return self._degraded(state, DegradedReason.DOWNLOAD_FAILED, e.message_safe)

        state.tracker.advance(self.scale.persisted)
        await self._record_download(
            state,
            DownloadStatus.COMPLETED,
            on_progress,
            persisted_model_url=persisted.model_url,
            persisted_thumbnail_url=persisted.thumbnail_url,
        )
        return await self._link(state, persisted, on_progress)

    async def _link(
        self,
        state: _LoopState,
        persisted: PersistResult,
        on_progress: ProgressCallback | None,
    ) -> PollOutcome:
        if state.stopped:
            return self._cancelled(state)

        try:
            result = self.reconciler.reconcile(state.task, persisted.model_url)
        except ReconciliationError as e:
            state.tracker.advance(self.scale.complete)
            await self._record_download(state, DownloadStatus.COMPLETED, on_progress)
            return self._degraded(
                state,
                DegradedReason.RECONCILIATION_FAILED,
                e.message_safe,
                thumbnail_failed=persisted.thumbnail_failed,
            )

        state.tracker.advance(self.scale.complete)
        await self._record_download(state, DownloadStatus.COMPLETED, on_progress)
        logger.info(f"[{state.task.task_id}] Conversion complete, figurine {result.figurine_id}")
        return PollOutcome(
            kind=OutcomeKind.SUCCEEDED,
            report=state.task.to_report(),
            figurine_id=result.figurine_id,
            figurine_created=result.created,
            thumbnail_failed=persisted.thumbnail_failed,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, task_id: str) -> ConversionTask:
        task = self.ledger.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    @staticmethod
    def _is_settled(task: ConversionTask) -> bool:
        if not task.is_terminal:
            return False
        if task.status != TaskStatus.SUCCEEDED:
            return True
        return task.download_status in (DownloadStatus.COMPLETED, DownloadStatus.FAILED)

    async def _record(
        self,
        state: _LoopState,
        status: TaskStatus,
        on_progress: ProgressCallback | None,
        **changes: Any,
    ) -> None:
        """Advance the task in memory, then persist the tick."""
        task = state.task.advance(
            status,
            progress_percent=state.tracker.value,
            attempts=state.attempts,
            **changes,
        )
        written = self.ledger.record_tick(
            task.task_id,
            status,
            progress_percent=task.progress_percent,
            attempts=task.attempts,
            model_artifact_url=changes.get("model_artifact_url"),
            thumbnail_artifact_url=changes.get("thumbnail_artifact_url"),
            error=changes.get("error"),
            download_status=changes.get("download_status"),
        )
        if not written:
            stored = self.ledger.get_task(task.task_id)
            if stored is not None and stored.is_terminal:
                logger.warning(
                    f"[{task.task_id}] Task already {stored.status.value} in ledger, stopping"
                )
                state.task = stored
                state.superseded = True
                return
        state.task = task
        await self._notify(task, on_progress)

    async def _record_download(
        self,
        state: _LoopState,
        download_status: DownloadStatus,
        on_progress: ProgressCallback | None,
        **changes: Any,
    ) -> None:
        task = state.task.advance_download(
            download_status, progress_percent=state.tracker.value, **changes
        )
        self.ledger.record_download(
            task.task_id,
            download_status,
            progress_percent=task.progress_percent,
            persisted_model_url=changes.get("persisted_model_url"),
            persisted_thumbnail_url=changes.get("persisted_thumbnail_url"),
        )
        state.task = task
        await self._notify(task, on_progress)

    async def _notify(self, task: ConversionTask, on_progress: ProgressCallback | None) -> None:
        report = self._remember(task.to_report())
        if on_progress is None:
            return
        try:
            result = on_progress(report)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"[{task.task_id}] Progress callback raised: {e}")

    def _remember(self, report: StatusReport) -> StatusReport:
        if self.cache is not None:
            self.cache.set(report.task_id, report)
        return report

    def _cancelled(self, state: _LoopState) -> PollOutcome:
        detail = "superseded by ledger" if state.superseded else "cancelled by caller"
        logger.info(f"[{state.task.task_id}] Polling stopped at {state.task.status.value}: {detail}")
        return PollOutcome(kind=OutcomeKind.CANCELLED, report=state.task.to_report(), detail=detail)

    def _degraded(
        self,
        state: _LoopState,
        reason: DegradedReason,
        detail: str,
        thumbnail_failed: bool = False,
    ) -> PollOutcome:
        return PollOutcome(
            kind=OutcomeKind.DEGRADED,
            report=state.task.to_report(),
            degraded_reason=reason,
            thumbnail_failed=thumbnail_failed,
            detail=detail,
        )
