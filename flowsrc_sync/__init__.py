"""
flowsrc-sync - Edit Node-RED function and template code as plain source files.

Projects the code fields of a Node-RED flows document onto a local source
tree and keeps both sides in sync while either one changes.
"""

__version__ = "1.0.0"

# Package imports for convenient access
from core.models.config import SyncConfig
from core.sync.engine import FlowSyncEngine
from core.transport.client import NodeRedClient

__all__ = [
    "SyncConfig",
    "FlowSyncEngine",
    "NodeRedClient",
    "__version__",
]
