"""
Sync Event Models.

Defines the messages the two trigger sources hand to the sync engine: file
change events and the debounced batches built from them, and remote
revision notifications.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, field_validator
import uuid


class EventType(Enum):
    """Types of file system events that can carry a local edit"""
    CREATED = "created"     # Editors that save by replacing the file
    MODIFIED = "modified"   # In-place save
    DELETED = "deleted"     # Not synchronized, only logged
    MOVED = "moved"         # Atomic save through a temporary file


class FileChangeEvent(BaseModel):
    """A single file system event under the source tree"""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType

    file_path: Path
    old_path: Optional[Path] = None  # For move events

    timestamp: datetime = Field(default_factory=datetime.now)

    @field_validator('file_path')
    @classmethod
    def validate_file_path(cls, v: Path) -> Path:
        """Ensure file path is absolute"""
        if not v.is_absolute():
            raise ValueError('File path must be absolute')
        return v

    @field_validator('old_path')
    @classmethod
    def validate_old_path(cls, v: Optional[Path]) -> Optional[Path]:
        """Ensure old path is absolute if provided"""
        if v is not None and not v.is_absolute():
            raise ValueError('Old path must be absolute if provided')
        return v

    @classmethod
    def create_file_created(cls, file_path: Path, **kwargs) -> 'FileChangeEvent':
        return cls(event_type=EventType.CREATED, file_path=file_path, **kwargs)

    @classmethod
    def create_file_modified(cls, file_path: Path, **kwargs) -> 'FileChangeEvent':
        return cls(event_type=EventType.MODIFIED, file_path=file_path, **kwargs)

    @classmethod
    def create_file_deleted(cls, file_path: Path, **kwargs) -> 'FileChangeEvent':
        return cls(event_type=EventType.DELETED, file_path=file_path, **kwargs)

    @classmethod
    def create_file_moved(cls, old_path: Path, new_path: Path, **kwargs) -> 'FileChangeEvent':
        return cls(event_type=EventType.MOVED, file_path=new_path, old_path=old_path, **kwargs)

    @property
    def carries_content(self) -> bool:
        """True if the event leaves new content at ``file_path``"""
        return self.event_type != EventType.DELETED

    def __str__(self) -> str:
        """String representation for logging"""
        old_part = f" (from {self.old_path})" if self.old_path else ""
        return f"{self.event_type.value.upper()}: {self.file_path}{old_part}"


class ChangeBatch(BaseModel):
    """
    Changed paths collected during one quiet window.

    Paths are kept unique in first-seen order; repeated events for the same
    file only bump the event counter.
    """

    batch_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    file_paths: List[Path] = Field(default_factory=list)
    event_count: int = 0
    created_at: datetime = Field(default_factory=datetime.now)

    def add_event(self, event: FileChangeEvent) -> None:
        self.event_count += 1
        if event.file_path not in self.file_paths:
            self.file_paths.append(event.file_path)

    @property
    def is_empty(self) -> bool:
        return not self.file_paths

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "batch_id": self.batch_id,
            "event_count": self.event_count,
            "created_at": self.created_at.isoformat(),
            "file_paths": [str(path) for path in self.file_paths]
        }


class RemoteChange(BaseModel):
    """A deploy notification received from the Node-RED comms channel"""

    revision: str
    topic: str = "notification/runtime-deploy"
    received_at: datetime = Field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"{self.topic} rev={self.revision}"
