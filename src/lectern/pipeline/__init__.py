"""Ingestion orchestration in synchronous and deferred modes."""

from .orchestrator import (
    IngestionOrchestrator,
    ProcessingOutcome,
    ProcessingStatus,
    ProcessingStatusReport,
)
from .queue import ProcessingHandle, ProcessingJob, ProcessingQueue

__all__ = [
    "IngestionOrchestrator",
    "ProcessingHandle",
    "ProcessingJob",
    "ProcessingOutcome",
    "ProcessingQueue",
    "ProcessingStatus",
    "ProcessingStatusReport",
]
