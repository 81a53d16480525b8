"""Import orchestration: sequencing, resume state and progress reporting."""

from .import_state import ImportStateStore, SettingsStore
from .migration_report import ProgressReporter
from .migration_orchestrator import MigrationOrchestrator

__all__ = [
    'MigrationOrchestrator',
    'ProgressReporter',
    'SettingsStore',
    'ImportStateStore'
]
