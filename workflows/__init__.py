"""
Workflows Package - Multi-unit automation

Contains the loop that drives every unit of a project through
extraction, scripting and shooting without manual steps.
"""

from .automation import AutomationLoop, SHOOT_TRIGGER_RESET

__all__ = [
    "AutomationLoop",
    "SHOOT_TRIGGER_RESET",
]
