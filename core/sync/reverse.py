"""
Source file changes back to flows.

Resolves changed files to the flow node and role field they were projected
from and copies their content into both the flows and the manifest.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from ..errors import FilesystemError
from ..models.flows import FlowItem
from ..models.manifest import Manifest
from .reconciler import read_source_file

logger = logging.getLogger(__name__)


def apply_file_changes(
    flows: List[FlowItem],
    manifest: Manifest,
    source_path: Path,
    changed_paths: Iterable[Union[str, Path]],
    files_map: Optional[Dict[str, str]] = None
) -> int:
    """
    Merge changed source files into ``flows`` and ``manifest`` in place.

    Paths that are not tracked by the manifest, files that no longer match a
    manifest entry and nodes that disappeared from the flows are skipped.
    Local content always replaces the last known snapshot.

    Args:
        flows: Live flow nodes
        manifest: Live manifest
        source_path: Root of the source tree
        changed_paths: Files reported as changed
        files_map: Path -> node id index (derived from the manifest if omitted)

    Returns:
        Number of role fields updated

    Raises:
        FilesystemError: A tracked file could not be read
    """
    source_path = Path(source_path).resolve()
    if files_map is None:
        files_map = manifest.files_map(source_path)

    flows_by_id = {flow_item.id: flow_item for flow_item in flows}
    changed = 0

    for changed_path in changed_paths:
        file_path = Path(changed_path).resolve()

        node_id = files_map.get(str(file_path))
        if not node_id:
            logger.debug(f"Ignoring untracked file {file_path}")
            continue

        manifest_item = manifest.items.get(node_id)
        if not manifest_item:
            continue

        manifest_file = manifest_item.get_file_by_name(file_path.name)
        if not manifest_file:
            continue

        flow_item = flows_by_id.get(node_id)
        if not flow_item:
            logger.debug(f"Node {node_id} no longer exists, ignoring {file_path}")
            continue

        # Deleted again before the batch fired
        if not file_path.is_file():
            continue

        content = read_source_file(file_path)
        try:
            modified_time = file_path.stat().st_mtime_ns
        except OSError as e:
            raise FilesystemError(f"Failed to stat {file_path}: {e}", file_path) from e

        manifest_file.content = content
        manifest_file.modified_time = modified_time
        flow_item.set_role(manifest_file.type, content)

        logger.debug(f"Applied {file_path.name} to {manifest_file.type} of node {node_id}")
        changed += 1

    return changed
