"""
Manifest models.

The manifest is the canonical description of the source tree derived from a
flows document: which folders exist, which files every projected node owns,
and the content and modification time last written for each file. It is
persisted next to the source tree and used as the baseline on restart.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from ..errors import FilesystemError

logger = logging.getLogger(__name__)


class ManifestFolder(BaseModel):
    """Folder derived from a tab or subflow node"""
    id: str
    type: str
    name: str  # Name as found in the flows document
    folder_name: str  # Sanitized, unique folder name


class ManifestFile(BaseModel):
    """One file per populated role field of a projected node"""
    type: str  # Role field the file maps to (func, format, ...)
    name: str  # Base file name plus the role extension
    content: str
    # st_mtime_ns captured right after the last write or read. Used to detect
    # edits made outside the engine.
    modified_time: Optional[int] = None


class ManifestItem(BaseModel):
    """A projected function or ui-template node"""
    id: str
    type: str
    name: str
    folder_name: str
    base_file_name: str
    files: List[ManifestFile] = Field(default_factory=list)

    def get_file(self, role: str) -> Optional[ManifestFile]:
        for manifest_file in self.files:
            if manifest_file.type == role:
                return manifest_file
        return None

    def get_file_by_name(self, file_name: str) -> Optional[ManifestFile]:
        for manifest_file in self.files:
            if manifest_file.name == file_name:
                return manifest_file
        return None


class Manifest(BaseModel):
    """
    Target layout of the source tree for one flows revision.

    The path -> id index is never stored; ``files_map`` derives it from the
    folder names, base file names and role extensions so it cannot drift.
    """
    folders: Dict[str, ManifestFolder] = Field(default_factory=dict)
    items: Dict[str, ManifestItem] = Field(default_factory=dict)
    rev: Optional[str] = None

    def iter_files(self) -> Iterator[Tuple[ManifestItem, ManifestFile]]:
        """Yield every (item, file) pair in manifest order"""
        for item in self.items.values():
            for manifest_file in item.files:
                yield item, manifest_file

    def file_path(self, source_path: Path, item: ManifestItem, manifest_file: ManifestFile) -> Path:
        return Path(source_path) / item.folder_name / manifest_file.name

    def files_map(self, source_path: Path) -> Dict[str, str]:
        """
        Build the file path -> node id index.

        Args:
            source_path: Root of the source tree

        Returns:
            Mapping of absolute file path strings to the owning node id
        """
        return {
            str(self.file_path(source_path, item, manifest_file)): item.id
            for item, manifest_file in self.iter_files()
        }

    @property
    def file_count(self) -> int:
        return sum(len(item.files) for item in self.items.values())

    def save(self, manifest_path: Path) -> None:
        """Persist the manifest as pretty JSON"""
        manifest_path = Path(manifest_path)
        try:
            manifest_path.parent.mkdir(parents=True, exist_ok=True)
            manifest_path.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise FilesystemError(f"Failed to save manifest {manifest_path}: {e}", manifest_path) from e
        logger.debug(f"Saved manifest with {len(self.items)} items to {manifest_path}")

    @classmethod
    def load(cls, manifest_path: Path) -> Optional["Manifest"]:
        """
        Load a persisted manifest.

        Returns:
            The manifest, or None when the file is missing or unreadable. A
            broken baseline only costs a full rewrite, so it is not fatal.
        """
        manifest_path = Path(manifest_path)
        if not manifest_path.exists():
            return None

        try:
            return cls.model_validate_json(manifest_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            logger.warning(f"Ignoring unreadable manifest {manifest_path}: {e}")
            return None


@dataclass
class ApplyStats:
    """Counters reported by one reconciliation pass"""
    folders_created: int = 0
    folders_deleted: int = 0
    files_created: int = 0
    files_updated: int = 0
    files_deleted: int = 0

    @property
    def total_modified(self) -> int:
        """Zero means the pass was a no-op"""
        return (
            self.folders_created + self.folders_deleted +
            self.files_created + self.files_updated + self.files_deleted
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "folders_created": self.folders_created,
            "folders_deleted": self.folders_deleted,
            "files_created": self.files_created,
            "files_updated": self.files_updated,
            "files_deleted": self.files_deleted,
            "total_modified": self.total_modified,
        }


@dataclass
class ApplyResult:
    """Outcome of TreeReconciler.apply"""
    stats: ApplyStats = field(default_factory=ApplyStats)
    files_map: Dict[str, str] = field(default_factory=dict)
