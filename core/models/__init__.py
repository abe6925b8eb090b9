"""
Core data models for flowsrc-sync

Pydantic models for flows, manifests and configuration.
"""

from .flows import FlowItem, FlowsResponse, FlowFileProperty, FLOW_FILE_PROPERTIES
from .manifest import Manifest, ManifestFolder, ManifestItem, ManifestFile, ApplyStats, ApplyResult
from .config import SyncConfig, GlobalSettings

__all__ = [
    # Flows
    "FlowItem",
    "FlowsResponse",
    "FlowFileProperty",
    "FLOW_FILE_PROPERTIES",

    # Manifest
    "Manifest",
    "ManifestFolder",
    "ManifestItem",
    "ManifestFile",
    "ApplyStats",
    "ApplyResult",

    # Configuration
    "SyncConfig",
    "GlobalSettings",
]
