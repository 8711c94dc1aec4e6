"""Core components - orchestration, providers, and infrastructure"""

from .batch import BatchReport, BatchRunner, BatchTask, CancellationToken, TaskOutcome
from .history import CommandHistory, HistoryAction
from .state_machine import InFlightGuard, InvalidTransitionError

# Note: StoryboardStudio is NOT imported here to avoid circular imports
# Import it directly: from core.studio import StoryboardStudio

__all__ = [
    # Batch execution
    "BatchReport",
    "BatchRunner",
    "BatchTask",
    "CancellationToken",
    "TaskOutcome",

    # History
    "CommandHistory",
    "HistoryAction",

    # State machine
    "InFlightGuard",
    "InvalidTransitionError",
]
