"""
Flows to manifest projection.

Derives the canonical source tree layout from a flows document in two
passes: folders first (tabs and subflows), then one item per function or
ui-template node with one file per populated role field.
"""

import logging
import posixpath
from typing import Dict, Iterable, Optional

from ..models.flows import (
    DEFAULT_FOLDER_NAME,
    FLOW_FILE_PROPERTIES,
    SUPPORTED_FLOW_FILE_TYPES,
    FlowItem,
)
from ..models.manifest import Manifest, ManifestFile, ManifestFolder, ManifestItem
from .naming import new_name_registry, sanitize_name

logger = logging.getLogger(__name__)


def flows_to_manifest(
    flows: Iterable[FlowItem],
    revision: Optional[str] = None,
    seen: Optional[Dict[str, int]] = None
) -> Manifest:
    """
    Build the manifest for a flows document.

    The output depends only on the input order and the ``seen`` registry, so
    two calls on the same flows produce identical manifests. Nodes of
    unsupported types, unnamed folders and nodes without any populated role
    field are skipped, never rejected.

    Args:
        flows: Flow nodes in document order
        revision: Revision the flows were fetched at
        seen: Name registry to resolve against (fresh one if omitted)

    Returns:
        The manifest, without modification times
    """
    flows = list(flows)
    if seen is None:
        seen = new_name_registry()

    manifest = Manifest(rev=revision)

    # Folders first so that every leaf can resolve its container
    for flow_item in flows:
        name = flow_item.display_name()
        if not name:
            continue

        folder_name = sanitize_name(name, "", seen)
        manifest.folders[flow_item.id] = ManifestFolder(
            id=flow_item.id,
            type=flow_item.type,
            name=name,
            folder_name=folder_name
        )

    for flow_item in flows:
        if flow_item.type not in SUPPORTED_FLOW_FILE_TYPES:
            continue

        populated = [
            (prop, flow_item.get_role(prop.type))
            for prop in FLOW_FILE_PROPERTIES
            if flow_item.get_role(prop.type) is not None
        ]
        # Nodes with nothing to write must not claim a name
        if not populated:
            continue

        folder = manifest.folders.get(flow_item.z) if flow_item.z else None
        folder_name = folder.folder_name if folder else DEFAULT_FOLDER_NAME

        name = flow_item.name or flow_item.id
        base_file_name = sanitize_name(name, folder_name, seen)
        # Another node's role file may already hold one of these names, e.g. "x.initialize.js"
        while any(
            posixpath.join(folder_name, f"{base_file_name}{prop.extension}") in seen
            for prop, _content in populated
        ):
            base_file_name = sanitize_name(name, folder_name, seen)
        for prop, _content in populated:
            seen[posixpath.join(folder_name, f"{base_file_name}{prop.extension}")] = 1

        manifest.items[flow_item.id] = ManifestItem(
            id=flow_item.id,
            type=flow_item.type,
            name=name,
            folder_name=folder_name,
            base_file_name=base_file_name,
            files=[
                ManifestFile(
                    type=prop.type,
                    name=f"{base_file_name}{prop.extension}",
                    content=content
                )
                for prop, content in populated
            ]
        )

    logger.debug(
        f"Projected {len(flows)} flow nodes to {len(manifest.folders)} folders "
        f"and {len(manifest.items)} items ({manifest.file_count} files)"
    )
    return manifest
