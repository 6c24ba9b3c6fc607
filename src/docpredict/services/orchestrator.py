"""
Batch prediction orchestrator.

Manifesto:
    A newly ingested document must turn into a complete prediction without
    anyone calling for it, and one flaky page out of hundreds must not sink
    the run. The orchestrator listens for ``DocumentEvents/Add``, pages
    through the document's rows, calls the prediction client per page with
    a bounded retry budget, and writes the prediction and its results in one
    step.

Architecture:
    ::

        DocumentEvents/Add ──► handle_document_event(event)
                                    │  one run per configured model, concurrently
                                    ▼
        create_prediction(document_id, model)
            resolve model ───────────── explicit name or registry default
            page 1..n (sequential) ─── list_document_rows(page, page_size)
              │  empty page ─────────── no client call
              └─ RetryContext.run_async(client.predict)
                    exhausted ──► policy "skip": log prediction_page_skipped, advance
                                  policy "fail": raise PredictionRunError
            insert_prediction(document, meta)   prediction + results together
            update_document_status(Completed)
            publish PredictionEvents/Add, DocumentEvents/Update

    When every run started from the bus fails structurally (unknown
    document, no default model, ``fail`` policy) the document is marked
    ``Error`` and ``DocumentEvents/Update`` is published.

Tags:
    orchestration, batching, retry, events, asyncio
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from docpredict.core.errors import (
    DocPredictError,
    PredictionRunError,
    TransientPredictionError,
)
from docpredict.core.events import DOCUMENT_EVENTS, PREDICTION_EVENTS, Event, EventAction, EventBus
from docpredict.core.events.manager import EventManager
from docpredict.core.events.memory import Subscription
from docpredict.core.logging import LogContext, get_logger
from docpredict.core.models import (
    BatchPredictionResult,
    BatchPredictionValue,
    Document,
    DocumentRow,
    DocumentStatus,
    Prediction,
    PredictionInput,
    utcnow,
)
from docpredict.core.protocols import ModelRegistry, PredictionClient, Repository
from docpredict.core.settings import DEFAULT_PAGE_SIZE, DocPredictSettings, PageFailurePolicy
from docpredict.execution.retry import (
    ExponentialBackoff,
    RetryContext,
    RetryStrategy,
    strategy_from_settings,
)
from docpredict.registry import ModelDescriptor

log = get_logger(__name__)


def is_page_retryable(error: Exception) -> bool:
    """Anything but a non-retryable docpredict error is worth another attempt."""
    if isinstance(error, DocPredictError):
        return error.retryable
    return True


@dataclass
class RunReport:
    """Statistics for one orchestration run."""

    document_id: str
    model: str
    pages: int = 0
    attempts: int = 0
    results: int = 0
    skipped_pages: list[int] = field(default_factory=list)
    skipped_rows: int = 0


class BatchOrchestrator:
    """Turns documents into predictions.

    Example::

        orchestrator = BatchOrchestrator(repository, client, registry, bus)
        await orchestrator.start()
        await documents.add(document)       # DocumentEvents/Add
        await orchestrator.drain()
        await orchestrator.stop()
    """

    def __init__(
        self,
        repository: Repository,
        client: PredictionClient,
        registry: ModelRegistry,
        bus: EventBus,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        retry_strategy: RetryStrategy | None = None,
        page_failure_policy: PageFailurePolicy = PageFailurePolicy.SKIP,
        prediction_models: Sequence[str] = (),
    ):
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        self.repository = repository
        self.client = client
        self.registry = registry
        self.bus = bus
        self.page_size = page_size
        self.retry_strategy = retry_strategy or ExponentialBackoff(max_attempts=3, retry_if=is_page_retryable)
        self.page_failure_policy = PageFailurePolicy(page_failure_policy)
        self.prediction_models = list(prediction_models)

        self.documents: EventManager[Document] = EventManager(bus, DOCUMENT_EVENTS)
        self.predictions: EventManager[Prediction] = EventManager(bus, PREDICTION_EVENTS)

        self._subscription: Subscription | None = None
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: DocPredictSettings,
        repository: Repository,
        client: PredictionClient,
        registry: ModelRegistry,
        bus: EventBus,
    ) -> BatchOrchestrator:
        return cls(
            repository,
            client,
            registry,
            bus,
            page_size=settings.page_size,
            retry_strategy=strategy_from_settings(settings, retry_if=is_page_retryable),
            page_failure_policy=settings.page_failure_policy,
            prediction_models=settings.prediction_models,
        )

    # ── Event handling ───────────────────────────────────────────────

    async def handle_document_event(self, event: Event) -> bool:
        """Run every configured model for an added document.

        The document is marked ``Error`` only when every run failed; a
        failed sibling never overrides a run that completed.

        Returns:
            False for actions other than Add; otherwise True when at least
            one run produced a prediction.
        """
        if event.action is not EventAction.ADD:
            return False

        document_id = event.target.id
        models: list[str | None] = list(self.prediction_models) or [None]
        outcomes = await asyncio.gather(*[self._run_from_event(document_id, m) for m in models])
        if any(outcomes):
            return True

        await self._mark_failed(document_id)
        return False

    async def _run_from_event(self, document_id: str, model: str | None) -> bool:
        try:
            await self.create_prediction(document_id, model)
            return True
        except Exception as e:
            details = e.to_dict() if isinstance(e, DocPredictError) else {"error": str(e)}
            log.error("prediction_run_failed", document_id=document_id, model=model, **details)
            return False

    async def _mark_failed(self, document_id: str) -> None:
        try:
            document = await self.repository.update_document_status(document_id, DocumentStatus.ERROR)
            await self.documents.update(document)
        except DocPredictError as e:
            log.warning("document_status_update_failed", document_id=document_id, error=str(e))

    async def _dispatch(self, event: Event) -> None:
        task = asyncio.create_task(self.handle_document_event(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def start(self) -> None:
        """Subscribe to DocumentEvents; each event gets its own task."""
        if self._subscription is not None:
            return
        self._subscription = await self.bus.listen(DOCUMENT_EVENTS, self._dispatch)
        log.info("orchestrator_started", page_size=self.page_size, policy=self.page_failure_policy.value)

    async def drain(self) -> None:
        """Wait until queued events and in-flight runs have finished."""
        while True:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
                continue
            if self._subscription is not None and self._subscription.pending():
                await asyncio.sleep(0)
                continue
            return

    async def stop(self) -> None:
        if self._subscription is None:
            return
        await self.drain()
        subscription, self._subscription = self._subscription, None
        subscription.unsubscribe()
        if subscription.task is not None:
            await subscription.task
        log.info("orchestrator_stopped")

    # ── Runs ─────────────────────────────────────────────────────────

    def resolve_model(self, model: str | None = None) -> ModelDescriptor:
        if model:
            return self.registry.find_model(model)
        return self.registry.get_default_model()

    async def create_prediction(self, document_id: str, model: str | None = None) -> Prediction:
        """Run one model over every page of a document and store the prediction.

        Raises:
            DocumentNotFoundError: if the document does not exist
            ModelNotFoundError: if ``model`` names no registered model
            NoDefaultModelError: if ``model`` is None and no model is registered
            PredictionRunError: if a page exhausts its attempts under the fail policy
        """
        descriptor = self.resolve_model(model)
        document = await self.repository.get_document(document_id)

        async with LogContext(document_id=document.id, model=descriptor.name):
            report = RunReport(document_id=document.id, model=descriptor.name)
            log.info("prediction_run_started", page_size=self.page_size)

            values: list[BatchPredictionValue] = []
            prediction_field = descriptor.label
            page = 1
            while True:
                rows_page = await self.repository.list_document_rows(document.id, page, self.page_size)
                report.pages += 1
                if rows_page.items:
                    batch = await self._predict_page(rows_page.items, descriptor, page, report)
                    if batch is not None:
                        values.extend(batch.results)
                        prediction_field = batch.prediction_field or prediction_field
                if not rows_page.has_more:
                    break
                page += 1

            meta = PredictionInput(
                model=descriptor.name,
                date=utcnow(),
                prediction_field=prediction_field,
                results=values,
            )
            prediction = await self.repository.insert_prediction(document, meta)
            document = await self.repository.update_document_status(document.id, DocumentStatus.COMPLETED)

            await self.predictions.add(prediction)
            await self.documents.update(document)

            report.results = len(values)
            log.info(
                "prediction_run_completed",
                prediction_id=prediction.id,
                pages=report.pages,
                attempts=report.attempts,
                results=report.results,
                skipped_pages=report.skipped_pages,
                skipped_rows=report.skipped_rows,
            )
            return prediction

    async def _call_client(self, rows: Sequence[DocumentRow], descriptor: ModelDescriptor) -> BatchPredictionResult:
        result = await self.client.predict(rows, descriptor.name)
        if len(result.results) != len(rows):
            raise TransientPredictionError(
                f"Prediction client returned {len(result.results)} values for {len(rows)} rows"
            )
        values = [
            value if value.provided_value is not None else replace(value, provided_value=row.provided_value)
            for row, value in zip(rows, result.results)
        ]
        return replace(result, results=values)

    async def _predict_page(
        self,
        rows: Sequence[DocumentRow],
        descriptor: ModelDescriptor,
        page: int,
        report: RunReport,
    ) -> BatchPredictionResult | None:
        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            log.warning(
                "prediction_page_retry",
                page=page,
                attempt=attempt,
                delay=round(delay, 2),
                error=str(error),
            )

        ctx = RetryContext(self.retry_strategy, on_retry=on_retry)
        try:
            return await ctx.run_async(self._call_client, rows, descriptor)
        except Exception as e:
            if isinstance(e, DocPredictError) and not e.retryable:
                raise
            if self.page_failure_policy is PageFailurePolicy.FAIL:
                raise PredictionRunError(
                    f"Page {page} failed after {ctx.attempts} attempts", cause=e
                ).with_context(document_id=report.document_id, model=report.model, page=page)

            report.skipped_pages.append(page)
            report.skipped_rows += len(rows)
            log.warning(
                "prediction_page_skipped",
                page=page,
                rows=len(rows),
                attempts=ctx.attempts,
                elapsed_seconds=round(ctx.elapsed_seconds, 3),
                error=str(e),
            )
            return None
        finally:
            report.attempts += ctx.attempts


__all__ = ["BatchOrchestrator", "RunReport", "is_page_retryable"]
