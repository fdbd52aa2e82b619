"""
TaskHero - dependency-aware task tracking driven by PRDs.

Plan, validate and sequence development work derived from requirement documents.
"""

__version__ = "0.1.0"
__author__ = "TaskHero Team"

from taskhero.core.service import OperationResult, TaskHero

__all__ = ["OperationResult", "TaskHero", "__version__"]
