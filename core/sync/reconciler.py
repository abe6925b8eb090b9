"""
Source tree reconciliation.

Applies a manifest to the source tree: creates missing folders and files,
rewrites files whose content changed remotely, and sweeps managed files that
no longer belong to any projected node.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import FrozenSet, Optional

from ..errors import FilesystemError
from ..models.flows import MANAGED_EXTENSIONS
from ..models.manifest import ApplyResult, Manifest, ManifestFile

logger = logging.getLogger(__name__)


def write_source_file(file_path: Path, content: str) -> int:
    """
    Write a source file and return its new st_mtime_ns.

    Newlines are written as-is so the file matches the flow field byte for byte.
    """
    try:
        with open(file_path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        return file_path.stat().st_mtime_ns
    except OSError as e:
        raise FilesystemError(f"Failed to write {file_path}: {e}", file_path) from e


def read_source_file(file_path: Path) -> str:
    try:
        with open(file_path, "r", encoding="utf-8", newline="") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise FilesystemError(f"Failed to read {file_path}: {e}", file_path) from e


class TreeReconciler:
    """
    Applies manifests to a source tree.

    Only files whose extension is in ``managed_extensions`` are ever deleted,
    so unrelated files living in the tree are safe. Folders are created but
    never removed, even once empty.
    """

    # Never descended into by the deletion sweep
    IGNORED_DIRECTORIES = {'.git', 'node_modules', '.svn', '.hg', '.vscode', '.idea'}

    def __init__(
        self,
        source_path: Path,
        managed_extensions: Optional[FrozenSet[str]] = None
    ):
        """
        Initialize the reconciler.

        Args:
            source_path: Root of the source tree
            managed_extensions: Suffixes owned by the sweep (defaults to the role extensions)
        """
        self.source_path = Path(source_path).resolve()
        self.managed_extensions = managed_extensions or MANAGED_EXTENSIONS

    def apply(self, manifest: Manifest, previous: Optional[Manifest] = None) -> ApplyResult:
        """
        Reconcile the source tree with ``manifest``.

        ``manifest`` is updated in place with the modification time of every
        file written or confirmed. ``previous`` is the manifest applied last;
        its recorded modification times tell whether a file was edited
        outside the engine since then. Such files are overwritten: the remote
        side wins.

        Args:
            manifest: Target layout
            previous: Baseline from the last applied manifest, if any

        Returns:
            ApplyResult with the counters and the path -> node id index

        Raises:
            FilesystemError: A folder or file could not be created or written,
                or a manifest path points outside the source tree.
                Changes made earlier in the pass are kept.
        """
        previous = previous or Manifest()
        result = ApplyResult()
        stats = result.stats

        try:
            self.source_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Failed to create source path {self.source_path}: {e}", self.source_path) from e

        for manifest_folder in manifest.folders.values():
            if self._ensure_folder(self._contained(self.source_path / manifest_folder.folder_name)):
                stats.folders_created += 1

        for item, manifest_file in manifest.iter_files():
            file_path = self._contained(manifest.file_path(self.source_path, item, manifest_file))

            previous_item = previous.items.get(item.id)
            previous_file = previous_item.get_file(manifest_file.type) if previous_item else None

            if not file_path.exists():
                # Leaf nodes of the default folder have no folder entry
                if self._ensure_folder(file_path.parent):
                    stats.folders_created += 1
                manifest_file.modified_time = write_source_file(file_path, manifest_file.content)
                stats.files_created += 1
            elif self._sync_existing_file(file_path, manifest_file, previous_file):
                stats.files_updated += 1

            result.files_map[str(file_path)] = item.id

        stats.files_deleted = self._sweep(result.files_map)

        logger.debug(f"Applied manifest to {self.source_path}: {stats.to_dict()}")
        return result

    def _contained(self, path: Path) -> Path:
        """Return ``path`` if it lies inside the source tree, else raise FilesystemError"""
        try:
            path.resolve().relative_to(self.source_path)
        except ValueError:
            raise FilesystemError(f"Refusing to write {path}: it is outside {self.source_path}", path)
        return path

    def _sync_existing_file(
        self,
        file_path: Path,
        manifest_file: ManifestFile,
        previous_file: Optional[ManifestFile]
    ) -> bool:
        """Bring an existing file up to date. Returns True if it was rewritten."""
        try:
            disk_mtime = file_path.stat().st_mtime_ns
        except OSError as e:
            raise FilesystemError(f"Failed to stat {file_path}: {e}", file_path) from e

        if previous_file is None:
            # No baseline for this file: only rewrite if it differs
            try:
                unchanged = read_source_file(file_path) == manifest_file.content
            except FilesystemError:
                unchanged = False
            if unchanged:
                manifest_file.modified_time = disk_mtime
                return False
        elif previous_file.modified_time != disk_mtime:
            logger.warning(f"{file_path} was modified outside the sync, overwriting with the remote version")
        elif previous_file.content == manifest_file.content:
            manifest_file.modified_time = disk_mtime
            return False

        manifest_file.modified_time = write_source_file(file_path, manifest_file.content)
        return True

    def _ensure_folder(self, folder_path: Path) -> bool:
        """Create a folder if needed. Returns True if it was created."""
        if folder_path.is_dir():
            return False
        try:
            folder_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Failed to create folder {folder_path}: {e}", folder_path) from e
        return True

    def _sweep(self, files_map: dict) -> int:
        """Delete managed files that are not in ``files_map``. Returns the count."""
        deleted = 0

        for dir_path, dir_names, file_names in os.walk(self.source_path):
            dir_names[:] = [d for d in dir_names if d not in self.IGNORED_DIRECTORIES]

            for file_name in file_names:
                file_path = Path(dir_path) / file_name
                if file_path.suffix.lower() not in self.managed_extensions:
                    continue
                if str(file_path) in files_map or not file_path.is_file():
                    continue

                try:
                    file_path.unlink()
                except OSError as e:
                    raise FilesystemError(f"Failed to delete {file_path}: {e}", file_path) from e
                logger.info(f"Deleted stale source file {file_path}")
                deleted += 1

        return deleted

    def clear(self) -> None:
        """Remove the whole source tree"""
        if not self.source_path.exists():
            return
        try:
            shutil.rmtree(self.source_path)
        except OSError as e:
            raise FilesystemError(f"Failed to clear {self.source_path}: {e}", self.source_path) from e
        logger.info(f"Cleared source directory {self.source_path}")
