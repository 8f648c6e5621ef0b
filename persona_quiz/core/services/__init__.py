"""Core services for the persona quiz."""

from .generation_scheduler import ConcurrentGenerationScheduler, SlotState, compute_trigger_key
from .insight_service import ChatTranscript, PersonalityInsightService
from .resilient_executor import ResilientCallExecutor, RetryPolicy

__all__ = [
    "ConcurrentGenerationScheduler",
    "SlotState",
    "compute_trigger_key",
    "ResilientCallExecutor",
    "RetryPolicy",
    "PersonalityInsightService",
    "ChatTranscript",
]
