"""Configuration module for the role synchronization engine."""
from .settings import SyncConfig, load_settings

__all__ = ["SyncConfig", "load_settings"]
