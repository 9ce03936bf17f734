"""SSO client package initialization."""

from pathlib import Path
from typing import Optional

import structlog

from .common.config import Config, DatabaseConfig
from .common.logging_config import setup_logging
from .core.db import (
    DatabaseConnectionError,
    DatabaseError,
    DuplicateRecordError,
    MigrationError,
    RecordNotFoundError,
    SsoRepository,
    SystemRoleError,
)

__version__ = "0.1.0"
__all__ = [
    "Config",
    "DatabaseConfig",
    "SsoRepository",
    "DatabaseError",
    "DatabaseConnectionError",
    "MigrationError",
    "RecordNotFoundError",
    "DuplicateRecordError",
    "SystemRoleError",
    "configure",
    "get_config",
    "get_repository",
    "reset",
]

# Module-level logger (not configured yet)
logger = structlog.get_logger(__name__)

# Global config and repository state
_config: Optional[Config] = None
_repository: Optional[SsoRepository] = None
_config_dir: Optional[Path] = None


async def configure(config_path: Optional[Path] = None, config: Optional[Config] = None) -> None:
    """
    Configure the SSO client package (async).

    Call once at application startup to load configuration, set up logging
    and open the database.

    Path Resolution:
    - If ``config`` is given it is used as is
    - Otherwise ``config_path`` is loaded, or ``config.yaml`` in the working
      directory when it exists, or the defaults
    - A relative database path is resolved against the config file's directory

    Args:
        config_path: Path to YAML configuration file
        config: Pre-loaded Config object (takes precedence over config_path)

    Example:
        >>> import sso_client
        >>> await sso_client.configure(config_path=Path("sso.yaml"))
    """
    global _config, _repository, _config_dir

    if config is not None:
        _config = config
    elif config_path is not None:
        _config = Config.from_yaml(config_path)
        _config_dir = config_path.parent
    else:
        cwd_config_path = Path.cwd() / "config.yaml"
        if cwd_config_path.exists():
            _config = Config.from_yaml(cwd_config_path)
            config_path = cwd_config_path
            _config_dir = cwd_config_path.parent
        elif _config is None:
            _config = Config()

    setup_logging(_config.logging)

    if _repository is None:
        _repository = await SsoRepository.from_config(_config.database, config_dir=_config_dir)

    logger.info(
        "sso_client_configured",
        version=__version__,
        config_path=str(config_path) if config_path else None,
        console_url=_config.console.url,
        service=_config.service.slug,
    )


def get_config() -> Config:
    """
    Get current configuration, initializing with defaults if needed.

    Example:
        >>> import sso_client
        >>> sso_client.get_config().console.timeout
        10
    """
    global _config
    if _config is None:
        # Does not open the repository; call configure() for that
        _config = Config()
        setup_logging(_config.logging)
    return _config


async def get_repository() -> SsoRepository:
    """
    Get the repository, opening it with the current config if needed.

    Example:
        >>> repo = await sso_client.get_repository()
        >>> roles = await repo.list_roles()
    """
    global _repository

    if _repository is None:
        config = get_config()
        _repository = await SsoRepository.from_config(config.database, config_dir=_config_dir)
        logger.info("repository_auto_initialized", database_path=str(_repository.db_path))

    return _repository


async def reset() -> None:
    """Close the repository and forget all module state."""
    global _config, _repository, _config_dir
    if _repository is not None:
        await _repository.close()
    _config = None
    _repository = None
    _config_dir = None
