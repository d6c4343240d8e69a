"""
Pipeline stages and the daily routine that runs them.
"""

from digest.pipeline.coordinator import ScrapeCoordinator
from digest.pipeline.enrichment import EnrichmentStage
from digest.pipeline.orchestrator import (
    DailyRoutine,
    RoutineResult,
    RunNotFound,
    ResyncRejected,
    NoItemsToSync,
    get_routine,
)

__all__ = [
    "ScrapeCoordinator",
    "EnrichmentStage",
    "DailyRoutine",
    "RoutineResult",
    "RunNotFound",
    "ResyncRejected",
    "NoItemsToSync",
    "get_routine",
]
