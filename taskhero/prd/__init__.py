"""PRD lifecycle - registry, change detection, status sync and integrity."""

from taskhero.prd.files import PrdFileMover, PrdLayout, hash_file
from taskhero.prd.integrity import (
    IntegrityChecker,
    IntegrityIssue,
    IntegrityIssueKind,
    IntegrityReport,
)
from taskhero.prd.models import PrdRecord, PrdStatus, TaskStats
from taskhero.prd.registry import ChangeClassification, PrdChange, PrdRegistry
from taskhero.prd.sync import SyncAction, SyncEngine, derive_status, plan_placement, plan_sync

__all__ = [
    "ChangeClassification",
    "IntegrityChecker",
    "IntegrityIssue",
    "IntegrityIssueKind",
    "IntegrityReport",
    "PrdChange",
    "PrdFileMover",
    "PrdLayout",
    "PrdRecord",
    "PrdRegistry",
    "PrdStatus",
    "SyncAction",
    "SyncEngine",
    "TaskStats",
    "derive_status",
    "hash_file",
    "plan_placement",
    "plan_sync",
]
