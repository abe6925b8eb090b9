"""
Configuration models for flowsrc-sync.

Handles the per-project sync configuration and process-wide settings.
"""

from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MANIFEST_FILE_NAME = "manifest.json"
FLOWS_BACKUP_FILE_NAME = "flows.json"


def expand_path(value: Any) -> Path:
    """Expand a leading ~ and make the path absolute"""
    return Path(str(value)).expanduser().resolve()


class SyncConfig(BaseModel):
    """Configuration of one Node-RED instance synchronized to one source tree"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    # Node-RED connection
    node_red_url: str
    bearer_token: Optional[str] = None
    allow_self_signed_certificates: bool = False

    # Source tree
    source_path: Path
    clean_on_start: bool = False

    # Directory holding the config file. Manifest and flows backup live here.
    config_dir: Path

    # Local trigger: quiet window before a batch of file changes is pushed
    file_change_delay_ms: int = Field(default=1000, ge=0, le=60000)

    # Remote trigger: reconnect backoff of the notification channel
    reconnect_base_delay_s: float = Field(default=1.0, gt=0)
    reconnect_max_delay_s: float = Field(default=30.0, gt=0)

    # Write flows.json next to the config after every fetch and before every push
    backup_flows: bool = True

    @field_validator('node_red_url')
    @classmethod
    def validate_node_red_url(cls, v: str) -> str:
        """Validate Node-RED URL format"""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('Node-RED URL must start with http:// or https://')
        return v.rstrip('/')

    @field_validator('bearer_token')
    @classmethod
    def validate_bearer_token(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_validator('source_path', 'config_dir', mode='before')
    @classmethod
    def validate_paths(cls, v: Any) -> Path:
        return expand_path(v)

    @property
    def manifest_file(self) -> Path:
        return self.config_dir / MANIFEST_FILE_NAME

    @property
    def flows_backup_file(self) -> Path:
        return self.config_dir / FLOWS_BACKUP_FILE_NAME

    @property
    def file_change_delay_s(self) -> float:
        return self.file_change_delay_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = self.model_dump(exclude={'config_dir'})
        data['source_path'] = str(data['source_path'])
        return data


class GlobalSettings(BaseSettings):
    """Process-wide settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="FLOWSRC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    # Config file looked up in the working directory when none is given
    config_file_name: str = "flowsrc.json"

    @field_validator('log_level', mode='before')
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        return str(v).upper()
