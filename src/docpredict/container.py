"""
Application container.

:class:`Application` owns every long-lived collaborator (event bus,
repository, model registry, prediction client) and the services wired from
them. Components are created on first access from
:class:`~docpredict.core.settings.DocPredictSettings`, or can be passed in
explicitly (tests, embedding).

Usage::

    async with Application() as app:
        document = await app.documents.add_document(DocumentInput(name="a.csv"), source)
        await app.orchestrator.drain()
        predictions = await app.documents.list_predictions(document.id)
"""

from __future__ import annotations

from typing import Any

from docpredict.core.events.memory import InMemoryEventBus
from docpredict.core.logging import get_logger
from docpredict.core.protocols import ModelRegistry, PredictionClient, Repository
from docpredict.core.settings import DocPredictSettings, PredictorBackend, RepositoryBackend, get_settings
from docpredict.predictors import EchoPredictionClient, WatsonxPredictionClient
from docpredict.registry import InMemoryModelRegistry, ModelDescriptor, load_models
from docpredict.services import BatchOrchestrator, CorrectionIngestor, DocumentService
from docpredict.storage import InMemoryRepository, OriginalFileStore, SqlRepository

log = get_logger(__name__)

ECHO_MODEL = ModelDescriptor(id="echo", name="echo", deployment_id="echo", label="", default=True)


class Application:
    """Lazily built dependency container with an async lifecycle."""

    def __init__(
        self,
        settings: DocPredictSettings | None = None,
        *,
        bus: InMemoryEventBus | None = None,
        repository: Repository | None = None,
        registry: ModelRegistry | None = None,
        client: PredictionClient | None = None,
    ) -> None:
        self._settings = settings
        self._bus = bus
        self._repository = repository
        self._registry = registry
        self._client = client
        self._orchestrator: BatchOrchestrator | None = None
        self._corrections: CorrectionIngestor | None = None
        self._documents: DocumentService | None = None
        self._started = False

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> DocPredictSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def bus(self) -> InMemoryEventBus:
        if self._bus is None:
            self._bus = InMemoryEventBus(auto_create_topics=self.settings.auto_create_topics)
        return self._bus

    @property
    def repository(self) -> Repository:
        if self._repository is None:
            settings = self.settings
            if settings.repository_backend is RepositoryBackend.SQL:
                self._repository = SqlRepository.from_url(
                    settings.database_url,
                    settings.confidence_threshold,
                    echo=settings.database_echo,
                )
            else:
                self._repository = InMemoryRepository(settings.confidence_threshold)
        return self._repository

    def _use_watsonx(self) -> bool:
        backend = self.settings.predictor_backend
        if backend is PredictorBackend.WATSONX:
            return True
        if backend is PredictorBackend.AUTO and self.settings.watsonx_configured:
            return True
        return False

    @property
    def registry(self) -> ModelRegistry:
        if self._registry is None:
            registry = InMemoryModelRegistry()
            if self.settings.models_file is not None:
                registry.add_models(load_models(self.settings.models_file))
            if len(registry) == 0 and not self._use_watsonx():
                registry.add_model(ECHO_MODEL)
            self._registry = registry
        return self._registry

    @property
    def client(self) -> PredictionClient:
        if self._client is None:
            settings = self.settings
            if self._use_watsonx():
                self._client = WatsonxPredictionClient(
                    self.registry,
                    api_key=settings.wml_api_key,
                    endpoint=settings.wml_endpoint,
                    identity_url=settings.wml_identity_url,
                    version=settings.wml_version,
                    timeout=settings.request_timeout_seconds,
                )
            else:
                if settings.predictor_backend is PredictorBackend.AUTO:
                    log.warning("wml_not_configured", predictor="echo")
                self._client = EchoPredictionClient(self.registry, settings.echo_confidence)
        return self._client

    @property
    def orchestrator(self) -> BatchOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = BatchOrchestrator.from_settings(
                self.settings, self.repository, self.client, self.registry, self.bus
            )
        return self._orchestrator

    @property
    def corrections(self) -> CorrectionIngestor:
        if self._corrections is None:
            self._corrections = CorrectionIngestor(self.repository, page_size=self.settings.page_size)
        return self._corrections

    @property
    def documents(self) -> DocumentService:
        if self._documents is None:
            settings = self.settings
            self._documents = DocumentService(
                self.repository,
                self.registry,
                self.bus,
                corrections=self.corrections,
                originals=OriginalFileStore(settings.originals_dir),
                confidence_threshold=settings.confidence_threshold,
                row_batch_size=settings.row_batch_size,
                page_size=settings.page_size,
            )
        return self._documents

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> Application:
        if not self._started:
            await self.orchestrator.start()
            self._started = True
        return self

    async def close(self) -> None:
        """Stop the orchestrator, then close client, repository and bus."""
        if self._orchestrator is not None:
            await self._orchestrator.stop()
        if self._client is not None:
            await self._client.close()
        if self._repository is not None:
            await self._repository.close()
        if self._bus is not None:
            await self._bus.close()
        self._started = False

    async def __aenter__(self) -> Application:
        return await self.start()

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


__all__ = ["Application", "ECHO_MODEL"]
