"""
Process-wide engine instance.

Application code shares one engine per process. It is created explicitly at
startup and torn down at shutdown:

    >>> engine = init_engine(KVSyncConfig.from_environment())
    >>> await engine.start()
    >>> ...
    >>> await shutdown_engine()
"""

from __future__ import annotations

import logging

from .bus import ALL_KEYS
from .config import KVSyncConfig
from .engine import KVSyncEngine
from .exceptions import KVSyncError
from .logging_utils import configure_logging

logger = logging.getLogger(__name__)

_engine: KVSyncEngine | None = None


def init_engine(
    config: KVSyncConfig | None = None,
    engine: KVSyncEngine | None = None,
) -> KVSyncEngine:
    """Install the process engine.

    When the configuration sets ``log_format``, the package logger is
    configured from it before the engine is built.

    Args:
        config: Configuration used to build the engine (environment if omitted)
        engine: Prebuilt engine to install instead

    Raises:
        KVSyncError: If an engine is already installed
    """
    global _engine
    if _engine is not None:
        raise KVSyncError("KV engine already initialized; call shutdown_engine() first")

    if engine is None:
        config = config or KVSyncConfig.from_environment()
        if config.log_format is not None:
            configure_logging(config)
        engine = KVSyncEngine.from_config(config)
    elif engine.config.log_format is not None:
        configure_logging(engine.config)
    _engine = engine
    logger.info("KV engine initialized", extra={"origin": engine.origin_id})
    return engine


def get_engine() -> KVSyncEngine:
    """Return the process engine.

    Raises:
        KVSyncError: If init_engine() has not been called
    """
    if _engine is None:
        raise KVSyncError("KV engine not initialized; call init_engine() first")
    return _engine


async def shutdown_engine() -> None:
    """Close and uninstall the process engine (no-op if none)."""
    global _engine
    engine, _engine = _engine, None
    if engine is not None:
        await engine.aclose()


def force_refresh_from_remote(key: str = ALL_KEYS) -> None:
    """Force every consumer of ``key`` (default: all keys) to re-pull from remote."""
    get_engine().force_refresh_from_remote(key)
