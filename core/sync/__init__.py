"""
Bidirectional flow/source synchronization.

Key Components:
- sanitize_name: Collision-free file and folder naming
- flows_to_manifest: Projection of flows onto the source tree layout
- TreeReconciler: Applies a manifest to the filesystem
- apply_file_changes: Maps edited files back to their flow fields
- FlowSourceWatcher: Debounced source tree monitoring
- FlowSyncEngine: Single-writer coordinator of both directions
"""

from .naming import new_name_registry, sanitize_name
from .projection import flows_to_manifest
from .reconciler import TreeReconciler, read_source_file, write_source_file
from .reverse import apply_file_changes
from .events import FileChangeEvent, EventType, ChangeBatch, RemoteChange
from .watcher import FlowSourceWatcher
from .engine import FlowSyncEngine, SyncDirection, SyncEngineMetrics, SyncPhase, SyncState

__all__ = [
    "new_name_registry",
    "sanitize_name",
    "flows_to_manifest",
    "TreeReconciler",
    "read_source_file",
    "write_source_file",
    "apply_file_changes",
    "FileChangeEvent",
    "EventType",
    "ChangeBatch",
    "RemoteChange",
    "FlowSourceWatcher",
    "FlowSyncEngine",
    "SyncDirection",
    "SyncEngineMetrics",
    "SyncPhase",
    "SyncState",
]
