"""
Flow Synchronization Engine.

Central coordinator between the Node-RED flows and the local source tree.
Owns the live flows, revision and manifest and serializes the two trigger
sources (debounced local file batches and remote deploy notifications)
through a single worker task and one lock.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..errors import ConflictError, FlowSyncError
from ..models.config import SyncConfig
from ..models.flows import FlowItem, FlowsResponse
from ..models.manifest import ApplyStats, Manifest
from ..transport.client import FlowsTransport
from .events import ChangeBatch
from .projection import flows_to_manifest
from .reconciler import TreeReconciler
from .reverse import apply_file_changes

logger = logging.getLogger(__name__)


class SyncPhase(Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class SyncDirection(Enum):
    LOCAL_TO_REMOTE = "local_to_remote"
    REMOTE_TO_LOCAL = "remote_to_local"


@dataclass
class SyncEngineMetrics:
    """Counters for the synchronization engine."""

    # Triggers
    local_batches: int = 0
    remote_notifications: int = 0
    remote_notifications_discarded: int = 0
    own_writes_ignored: int = 0

    # Local to remote
    pushes: int = 0
    flow_items_pushed: int = 0
    conflicts: int = 0

    # Remote to local
    remote_passes: int = 0
    files_created: int = 0
    files_updated: int = 0
    files_deleted: int = 0
    folders_created: int = 0

    # Error tracking
    passes_failed: int = 0
    consecutive_errors: int = 0
    last_error_time: Optional[datetime] = None
    last_error_message: Optional[str] = None

    last_sync_time: Optional[datetime] = None

    def record_stats(self, stats: ApplyStats) -> None:
        self.files_created += stats.files_created
        self.files_updated += stats.files_updated
        self.files_deleted += stats.files_deleted
        self.folders_created += stats.folders_created


@dataclass
class SyncState:
    """The live flows, the revision they belong to and the manifest applied from them."""

    flows: List[FlowItem] = field(default_factory=list)
    revision: Optional[str] = None
    manifest: Optional[Manifest] = None
    files_map: Dict[str, str] = field(default_factory=dict)

    @property
    def is_loaded(self) -> bool:
        return self.manifest is not None


class FlowSyncEngine:
    """
    Single-writer coordinator for bidirectional flow synchronization.

    Triggers never touch the state directly: ``submit_local_changes`` and
    ``notify_remote_revision`` only record pending work and wake the worker.
    The worker takes one unit of work at a time under ``_gate`` in this
    order: a forced refresh after a conflict, then the pending local batch,
    then the latest remote revision.
    """

    def __init__(
        self,
        config: SyncConfig,
        transport: FlowsTransport,
        reconciler: Optional[TreeReconciler] = None
    ):
        """
        Initialize the synchronization engine.

        Args:
            config: Sync configuration
            transport: Remote flows fetch/push implementation
            reconciler: Source tree reconciler (created from the config if omitted)
        """
        self.config = config
        self.transport = transport
        self.source_path = Path(config.source_path).resolve()
        self.reconciler = reconciler or TreeReconciler(self.source_path)

        self.state = SyncState()
        self.phase = SyncPhase.IDLE
        self.direction: Optional[SyncDirection] = None

        # Single-writer gate for every pass over the state
        self._gate = asyncio.Lock()

        # Pending work
        self._pending_paths: List[Path] = []
        self._pending_revision: Optional[str] = None
        self._force_refresh = False

        # Background processing
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._worker_task: Optional[asyncio.Task] = None
        self.is_running = False

        self.metrics = SyncEngineMetrics()
        self.start_time: Optional[datetime] = None

        logger.info(f"Initialized FlowSyncEngine for {config.node_red_url} -> {self.source_path}")

    async def initial_sync(self) -> ApplyStats:
        """
        Fetch the flows and project them onto the source tree.

        The persisted manifest is used as the baseline so unchanged files are
        not rewritten, unless ``clean_on_start`` wiped the tree first.

        Returns:
            Counters of the reconciliation pass

        Raises:
            TransportError: The flows could not be fetched
            FilesystemError: The source tree could not be written
        """
        async with self._gate:
            self._enter(SyncDirection.REMOTE_TO_LOCAL)
            try:
                logger.info(f"Loading flows from Node-RED: {self.config.node_red_url}")
                flows_response = await self.transport.fetch_flows()
                logger.info(f"Loaded {len(flows_response.flows)} flow nodes with revision: {flows_response.rev}")

                manifest = flows_to_manifest(flows_response.flows, flows_response.rev)

                previous: Optional[Manifest] = None
                if self.config.clean_on_start:
                    logger.info(f"Clearing source directory {self.source_path}")
                    self.reconciler.clear()
                else:
                    previous = Manifest.load(self.config.manifest_file)
                    if previous:
                        logger.info(f"Loaded existing manifest with {len(previous.items)} items")

                stats = self._apply(flows_response, manifest, previous)
                self._backup_flows()
                return stats
            finally:
                self._leave()

    def submit_local_changes(self, changes: Union[ChangeBatch, Iterable[Union[str, Path]]]) -> None:
        """
        Queue changed source files for the next local pass.

        Batches that arrive while a pass runs coalesce into one pending batch.
        """
        paths = changes.file_paths if isinstance(changes, ChangeBatch) else changes

        added = 0
        for path in paths:
            path = Path(path).resolve()
            if path not in self._pending_paths:
                self._pending_paths.append(path)
                added += 1

        self.metrics.local_batches += 1
        logger.debug(f"Queued {added} changed file(s), {len(self._pending_paths)} pending")
        self._wake()

    def notify_remote_revision(self, revision: str) -> bool:
        """
        Record a deploy notification.

        Returns:
            False if the revision is the one already held (no I/O follows)
        """
        self.metrics.remote_notifications += 1

        if revision == self.state.revision:
            self.metrics.remote_notifications_discarded += 1
            logger.debug(f"Flows not changed, rev: {revision}")
            return False

        if self._pending_revision and self._pending_revision != revision:
            logger.debug(f"Replacing pending revision {self._pending_revision} with {revision}")

        logger.info(f"Flows changed on Node-RED, rev: {revision}")
        self._pending_revision = revision
        self._wake()
        return True

    def request_refresh(self) -> None:
        """Schedule a remote-to-local pass ahead of any other pending work"""
        self._force_refresh = True
        self._wake()

    @property
    def has_pending_work(self) -> bool:
        return self._force_refresh or bool(self._pending_paths) or self._pending_revision is not None

    async def process_pending(self) -> None:
        """Run passes until no work is pending"""
        while self.has_pending_work:
            await self._run_next()
        self._idle.set()

    async def _run_next(self) -> None:
        async with self._gate:
            if self._force_refresh:
                self._force_refresh = False
                await self._guarded(SyncDirection.REMOTE_TO_LOCAL, self._remote_pass)
            elif self._pending_paths:
                paths = self._pending_paths
                self._pending_paths = []
                await self._guarded(SyncDirection.LOCAL_TO_REMOTE, self._local_pass, paths)
            elif self._pending_revision is not None:
                revision = self._pending_revision
                self._pending_revision = None
                # A push of ours may have produced this revision in the meantime
                if revision == self.state.revision:
                    self.metrics.remote_notifications_discarded += 1
                    logger.debug(f"Revision {revision} already applied")
                    return
                await self._guarded(SyncDirection.REMOTE_TO_LOCAL, self._remote_pass)

    async def _guarded(self, direction: SyncDirection, pass_fn, *args) -> None:
        """Run one pass. Failures are recorded and the engine returns to idle."""
        self._enter(direction)
        try:
            await pass_fn(*args)
            self.metrics.consecutive_errors = 0
            self.metrics.last_sync_time = datetime.now()
        except FlowSyncError as e:
            logger.error(f"{direction.value} sync failed: {e}")
            self.metrics.passes_failed += 1
            self.metrics.consecutive_errors += 1
            self.metrics.last_error_message = str(e)
            self.metrics.last_error_time = datetime.now()
        finally:
            self._leave()

    async def _local_pass(self, paths: List[Path]) -> int:
        """Merge changed files into the flows and deploy them"""
        state = self.state
        if not state.is_loaded:
            logger.warning("Ignoring local changes, flows are not loaded yet")
            return 0

        changed_paths = [path for path in paths if not self._is_own_write(path)]
        ignored = len(paths) - len(changed_paths)
        if ignored:
            self.metrics.own_writes_ignored += ignored
            logger.debug(f"Ignored {ignored} file(s) written by the last remote pass")
        if not changed_paths:
            return 0

        logger.info(f"Detected changes in {len(changed_paths)} file(s)")
        changed = apply_file_changes(
            state.flows, state.manifest, self.source_path, changed_paths, state.files_map
        )
        if changed == 0:
            return 0

        logger.info(f"Applied changes to {changed} flow item(s)")
        self._backup_flows()

        try:
            new_revision = await self.transport.push_flows(state.flows, state.revision)
        except ConflictError:
            logger.info(f"Flows changed on Node-RED since revision {state.revision}, refreshing before further local changes")
            self.metrics.conflicts += 1
            self._force_refresh = True
            return changed

        state.revision = new_revision
        state.manifest.rev = new_revision
        state.manifest.save(self.config.manifest_file)

        self.metrics.pushes += 1
        self.metrics.flow_items_pushed += changed
        logger.info(f"Updated flows on Node-RED. New revision: {new_revision}")
        return changed

    async def _remote_pass(self) -> ApplyStats:
        """Refetch the flows and replay them onto the source tree"""
        flows_response = await self.transport.fetch_flows()
        logger.info(f"Rebuilding manifest from flows revision {flows_response.rev}")

        manifest = flows_to_manifest(flows_response.flows, flows_response.rev)
        stats = self._apply(flows_response, manifest, self.state.manifest)
        self._backup_flows()

        self.metrics.remote_passes += 1
        self._log_stats(stats)
        return stats

    def _apply(
        self,
        flows_response: FlowsResponse,
        manifest: Manifest,
        previous: Optional[Manifest]
    ) -> ApplyStats:
        """Reconcile the tree and make the result the live state"""
        result = self.reconciler.apply(manifest, previous)

        self.state.flows = flows_response.flows
        self.state.revision = flows_response.rev
        self.state.manifest = manifest
        self.state.files_map = result.files_map

        self.metrics.record_stats(result.stats)

        if result.stats.total_modified > 0:
            manifest.save(self.config.manifest_file)

        return result.stats

    def _is_own_write(self, path: Path) -> bool:
        """True if the file still has the mtime recorded when it was last written or read"""
        state = self.state
        node_id = state.files_map.get(str(path))
        if not node_id:
            return False

        item = state.manifest.items.get(node_id)
        manifest_file = item.get_file_by_name(path.name) if item else None
        if manifest_file is None or manifest_file.modified_time is None:
            return False

        try:
            return path.stat().st_mtime_ns == manifest_file.modified_time
        except OSError:
            return False

    def _backup_flows(self) -> None:
        if not self.config.backup_flows or not self.state.flows:
            return

        backup_file = self.config.flows_backup_file
        payload = FlowsResponse(flows=self.state.flows, rev=self.state.revision or "").to_payload()
        try:
            backup_file.parent.mkdir(parents=True, exist_ok=True)
            with open(backup_file, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
        except OSError as e:
            # The backup never blocks a sync pass
            logger.warning(f"Failed to back up flows to {backup_file}: {e}")

    def _log_stats(self, stats: ApplyStats) -> None:
        if stats.total_modified == 0:
            logger.info("No changes detected")
            return
        for name, value in stats.to_dict().items():
            if name != "total_modified" and value > 0:
                logger.info(f"    {name.replace('_', ' ').capitalize()}: {value}")

    def _enter(self, direction: SyncDirection) -> None:
        self.phase = SyncPhase.SYNCING
        self.direction = direction

    def _leave(self) -> None:
        self.phase = SyncPhase.IDLE
        self.direction = None

    def _wake(self) -> None:
        self._idle.clear()
        self._wakeup.set()

    async def _worker(self) -> None:
        """Background worker draining pending work"""
        logger.info("Started sync worker")

        while self.is_running:
            try:
                await self._wakeup.wait()
                self._wakeup.clear()
                await self.process_pending()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in sync worker: {e}")
                self.metrics.consecutive_errors += 1
                self.metrics.last_error_message = str(e)
                self.metrics.last_error_time = datetime.now()
            finally:
                if not self.has_pending_work:
                    self._idle.set()

        logger.info("Stopped sync worker")

    async def start(self) -> None:
        """Start the background worker"""
        if self.is_running:
            logger.warning("Sync engine is already running")
            return

        self.is_running = True
        self.start_time = datetime.now()
        self._worker_task = asyncio.create_task(self._worker())
        if self.has_pending_work:
            self._wake()

    async def stop(self) -> None:
        """Stop the background worker. A pass in flight is cancelled."""
        if not self.is_running:
            return

        self.is_running = False
        if self._worker_task:
            self._worker_task.cancel()
            await asyncio.gather(self._worker_task, return_exceptions=True)
            self._worker_task = None

        self._idle.set()
        logger.info("Stopped FlowSyncEngine")

    async def wait_until_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until no work is pending and no pass runs"""
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)

    def get_status(self) -> Dict[str, Any]:
        """
        Get status information about the sync engine.

        Returns:
            Dictionary with status information
        """
        manifest = self.state.manifest
        uptime = (datetime.now() - self.start_time).total_seconds() if self.start_time else 0.0

        return {
            "is_running": self.is_running,
            "phase": self.phase.value,
            "direction": self.direction.value if self.direction else None,
            "revision": self.state.revision,
            "source_path": str(self.source_path),
            "flow_nodes": len(self.state.flows),
            "manifest_items": len(manifest.items) if manifest else 0,
            "manifest_files": manifest.file_count if manifest else 0,
            "pending_paths": len(self._pending_paths),
            "pending_revision": self._pending_revision,
            "uptime_seconds": uptime,
            "pushes": self.metrics.pushes,
            "conflicts": self.metrics.conflicts,
            "remote_passes": self.metrics.remote_passes,
            "remote_notifications_discarded": self.metrics.remote_notifications_discarded,
            "own_writes_ignored": self.metrics.own_writes_ignored,
            "passes_failed": self.metrics.passes_failed,
            "consecutive_errors": self.metrics.consecutive_errors,
            "last_error": self.metrics.last_error_message,
            "last_error_time": self.metrics.last_error_time.isoformat() if self.metrics.last_error_time else None,
            "last_sync_time": self.metrics.last_sync_time.isoformat() if self.metrics.last_sync_time else None
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()
