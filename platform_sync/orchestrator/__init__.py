"""Orchestration of concurrent sync and enforcement runs."""

from .broadcast import ProgressBroadcaster, ProgressSubscription
from .builder import OrchestratorBuilder
from .collaborators import (
    CredentialProvider,
    IdentityResolver,
    LoggingHistorySink,
    RunHistorySink,
)
from .jobs import BatchJob, BatchJobResult, BatchJobRunner
from .models import (
    OrchestratorStatus,
    PlatformStatus,
    SyncPriority,
    SyncRunState,
    SyncTriggerRequest,
)
from .orchestrator import Orchestrator

__all__ = [
    "BatchJob",
    "BatchJobResult",
    "BatchJobRunner",
    "CredentialProvider",
    "IdentityResolver",
    "LoggingHistorySink",
    "Orchestrator",
    "OrchestratorBuilder",
    "OrchestratorStatus",
    "PlatformStatus",
    "ProgressBroadcaster",
    "ProgressSubscription",
    "SyncPriority",
    "SyncRunState",
    "SyncTriggerRequest",
]
