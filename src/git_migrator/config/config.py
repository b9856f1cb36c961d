"""Configuration management for Git Migrator."""

from typing import Optional, Dict, Any
from pathlib import Path
import os

from pydantic import BaseModel, Field, validator
import yaml
from dotenv import load_dotenv

DEFAULT_HOME_DIR = Path.home() / '.git-migrator'

MIN_CONCURRENT_MIGRATIONS = 1
MAX_CONCURRENT_MIGRATIONS = 10


def validate_concurrency(value: int) -> int:
    """Check a concurrency bound against the supported range."""
    if not MIN_CONCURRENT_MIGRATIONS <= value <= MAX_CONCURRENT_MIGRATIONS:
        raise ValueError(
            f'Max concurrent migrations must be between '
            f'{MIN_CONCURRENT_MIGRATIONS} and {MAX_CONCURRENT_MIGRATIONS}'
        )
    return value


class QueueConfig(BaseModel):
    """Queue scheduling configuration."""

    max_concurrent: int = Field(
        default=3, description='Maximum concurrent orchestrator dispatches'
    )
    dispatch_timeout: Optional[float] = Field(
        default=None,
        description='Seconds before an orchestrator call is abandoned (none by default)',
    )
    state_file: Optional[str] = Field(
        default=None,
        description='Queue state file; queue is auto-saved after every change when set',
    )

    @validator('max_concurrent')
    def validate_max_concurrent(cls, v):
        """Validate concurrency bound."""
        return validate_concurrency(v)

    @validator('dispatch_timeout')
    def validate_dispatch_timeout(cls, v):
        """Validate dispatch timeout is positive."""
        if v is not None and v <= 0:
            raise ValueError('Dispatch timeout must be positive')
        return v


class ProgressConfig(BaseModel):
    """Progress tracking configuration."""

    storage_dir: str = Field(
        default=str(DEFAULT_HOME_DIR / 'progress'),
        description='Directory holding one JSON document per operation',
    )
    auto_persist: bool = Field(
        default=True, description='Persist progress after every mutation'
    )
    cleanup_after_hours: int = Field(
        default=24, description='Default age for cleaning up finished operations'
    )

    @validator('cleanup_after_hours')
    def validate_cleanup_after_hours(cls, v):
        """Validate cleanup age is not negative."""
        if v < 0:
            raise ValueError('Cleanup age must not be negative')
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default='INFO', description='Log level')
    file: Optional[str] = Field(default=None, description='Log file path')
    format: Optional[str] = Field(default=None, description='Log format')
    rotation: str = Field(default='10 MB', description='Log file rotation')
    retention: str = Field(default='30 days', description='Rotated log retention')
    serialize: bool = Field(
        default=False, description='Write the log file as JSON lines'
    )

    @validator('level')
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class Config(BaseModel):
    """Main configuration class for Git Migrator."""

    queue: QueueConfig = Field(
        default_factory=QueueConfig, description='Queue settings'
    )
    progress: ProgressConfig = Field(
        default_factory=ProgressConfig, description='Progress tracking settings'
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description='Logging settings'
    )

    class Config:
        """Pydantic configuration."""

        extra = 'forbid'

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Load configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        timeout = os.getenv('GIT_MIGRATOR_DISPATCH_TIMEOUT')
        auto_persist = os.getenv('GIT_MIGRATOR_AUTO_PERSIST')
        cleanup_hours = os.getenv('GIT_MIGRATOR_CLEANUP_AFTER_HOURS')

        config_data = {
            'queue': {
                'max_concurrent': int(os.getenv('GIT_MIGRATOR_MAX_CONCURRENT', 3)),
                'dispatch_timeout': float(timeout) if timeout else None,
                'state_file': os.getenv('GIT_MIGRATOR_QUEUE_STATE_FILE'),
            },
            'progress': {
                'storage_dir': os.getenv('GIT_MIGRATOR_PROGRESS_DIR'),
                'auto_persist': auto_persist.lower() == 'true'
                if auto_persist
                else None,
                'cleanup_after_hours': int(cleanup_hours) if cleanup_hours else None,
            },
            'logging': {
                'level': os.getenv('LOG_LEVEL', 'INFO'),
                'file': os.getenv('LOG_FILE'),
            },
        }

        config_data = cls._remove_none_values(config_data)

        return cls(**config_data)

    @staticmethod
    def _remove_none_values(data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively remove None values from dictionary."""
        if isinstance(data, dict):
            return {
                k: Config._remove_none_values(v)
                for k, v in data.items()
                if v is not None
            }
        return data

    def to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump(
                self.dict(), f, default_flow_style=False, indent=2, sort_keys=False
            )

    @staticmethod
    def create_template(output_path: str) -> None:
        """Create a configuration template file."""
        template_config = {
            'queue': {
                'max_concurrent': 3,
                'dispatch_timeout': None,
                'state_file': str(DEFAULT_HOME_DIR / 'queue-state.json'),
            },
            'progress': {
                'storage_dir': str(DEFAULT_HOME_DIR / 'progress'),
                'auto_persist': True,
                'cleanup_after_hours': 24,
            },
            'logging': {
                'level': 'INFO',
                'file': 'git-migrator.log',
            },
        }

        config_file = Path(output_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump(
                template_config, f, default_flow_style=False, indent=2, sort_keys=False
            )
