"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CycleBreakStrategy = Literal["back-edge", "highest-id"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TASKHERO_",
        case_sensitive=False,
        extra="ignore",
    )

    # Locations
    project_root: Path = Field(
        default=Path("."),
        description="Project root; relative paths below are resolved against it",
    )
    state_dir: Path = Field(
        default=Path(".taskhero"),
        description="Directory holding snapshots and the lock file",
    )
    tasks_file: Path = Field(
        default=Path(".taskhero/tasks/tasks.json"),
        description="Task snapshot file",
    )
    prds_file: Path = Field(
        default=Path(".taskhero/prd/prds.json"),
        description="PRD registry snapshot file",
    )
    prd_dir: Path = Field(
        default=Path(".taskhero/prd"),
        description="Lifecycle root holding pending/in-progress/done/archived",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    log_to_file: bool = Field(
        default=False,
        description="Also write logs to a rotating file",
    )
    log_dir: Path = Field(
        default=Path("logs"),
        description="Directory for log files",
    )

    # Locking
    lock_timeout: float = Field(
        default=30.0,
        ge=0,
        description="Seconds to wait for the project lock",
    )

    # Policies
    cycle_break_strategy: CycleBreakStrategy = Field(
        default="back-edge",
        description="Which edge fix-dependencies drops to break a cycle",
    )
    subtasks_require_started_parent: bool = Field(
        default=True,
        description="Only offer subtasks whose parent is in-progress as next task",
    )
    auto_sync_prd_status: bool = Field(
        default=True,
        description="Re-derive linked PRD status after task status changes",
    )

    def resolve(self, path: Path) -> Path:
        """Resolve a configured path against the project root."""
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()

    @property
    def tasks_path(self) -> Path:
        """Absolute path of the task snapshot."""
        return self.resolve(self.tasks_file)

    @property
    def prds_path(self) -> Path:
        """Absolute path of the PRD registry snapshot."""
        return self.resolve(self.prds_file)

    @property
    def prd_root(self) -> Path:
        """Absolute path of the PRD lifecycle root."""
        return self.resolve(self.prd_dir)

    @property
    def lock_path(self) -> Path:
        """Absolute path of the advisory lock file."""
        return self.resolve(self.state_dir) / "taskhero.lock"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment.

    Example:
        >>> settings = get_settings()
        >>> settings.cycle_break_strategy
        'back-edge'
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
