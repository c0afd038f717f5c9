"""Wiring of store, pipeline, queue and gateway shared by the API and the CLI."""

import logging
from dataclasses import dataclass
from typing import Optional

from config import Settings, get_settings
from core.gateway import SubmissionGateway
from core.queue import JobQueue
from core.results import ResultReader
from core.stores import JobStore, create_store
from workers.metadata import MetadataWorker
from workers.orchestrator import PipelineOrchestrator
from workers.summarizer import Analyzer
from workers.transcript_chain import TranscriptChain, build_strategies

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: JobStore
    orchestrator: PipelineOrchestrator
    queue: JobQueue
    gateway: SubmissionGateway
    reader: ResultReader

    async def start(self) -> None:
        await self.store.initialize()
        self.queue.start()
        logger.info(f"Services started with {self.store.name} store")

    async def stop(self) -> None:
        await self.queue.stop()
        await self.store.close()
        logger.info("Services stopped")


def build_services(
    settings: Optional[Settings] = None,
    store: Optional[JobStore] = None,
    orchestrator: Optional[PipelineOrchestrator] = None,
    metadata_worker: Optional[MetadataWorker] = None,
) -> Services:
    """Assemble the default component graph; any part can be injected."""
    settings = settings or get_settings()
    store = store or create_store(settings)
    metadata_worker = metadata_worker or MetadataWorker(settings)
    if orchestrator is None:
        chain = TranscriptChain(store, build_strategies(settings), settings)
        orchestrator = PipelineOrchestrator(
            store, chain, Analyzer(settings), metadata_worker=metadata_worker, settings=settings
        )
    queue = JobQueue(orchestrator.run, settings.worker_concurrency, settings.queue_max_size)
    return Services(
        settings=settings,
        store=store,
        orchestrator=orchestrator,
        queue=queue,
        gateway=SubmissionGateway(store, queue),
        reader=ResultReader(store, metadata_worker, settings.enrichment_timeout),
    )
