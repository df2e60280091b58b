"""
Sync layer: run configuration and the four-phase orchestrator.
"""
from .config import ConfigError, SyncConfig
from .orchestrator import SyncOrchestrator

__all__ = ["ConfigError", "SyncConfig", "SyncOrchestrator"]
