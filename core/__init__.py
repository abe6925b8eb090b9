"""
flowsrc-sync core package

Bidirectional synchronization between Node-RED flows and a local source tree.
"""

__version__ = "1.0.0"

from .models import FlowItem, FlowsResponse, Manifest, SyncConfig

__all__ = [
    "FlowItem",
    "FlowsResponse",
    "Manifest",
    "SyncConfig",
]
