import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastmcp import FastMCP

from iot_data.context import DataContext, create_data_context
from iot_data.storage.cache_backing import SQLiteCacheBacking

logger = logging.getLogger(__name__)

_context: DataContext | None = None


def get_context() -> DataContext:
    """Get the current DataContext. Raises if not initialized."""
    if _context is None:
        raise RuntimeError("Data context not initialized. Server lifespan has not started.")
    return _context


def _reset_context() -> None:
    """Clear the module-level context reference. Used in tests."""
    global _context  # noqa: PLW0603
    _context = None


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[dict]:
    """Build the data context (and its cache backing) for the server lifecycle."""
    global _context  # noqa: PLW0603
    from iot_data.config import get_settings

    settings = get_settings()

    backing: SQLiteCacheBacking | None = None
    if settings.uses_persistent_cache:
        backing = SQLiteCacheBacking(settings.cache_db_path)
        await backing.initialize()
        logger.info("Cache backing opened at %s", settings.cache_db_path)

    _context = create_data_context(settings, backing=backing)
    _context.start()

    try:
        yield {"context": _context}
    finally:
        await _context.close()
        _context = None
        if backing is not None:
            await backing.close()
            logger.info("Cache backing closed")


mcp = FastMCP("iot-data", lifespan=app_lifespan)


def setup_logging(log_level: str, data_dir: Path) -> None:
    """Configure logging with file rotation and console output.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
        data_dir: Base data directory; logs go to data_dir/logs/server.log.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Exact type check: FileHandler subclasses StreamHandler
    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(formatter)
        root_logger.addHandler(console)

    log_dir = data_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "server.log"

    if not any(isinstance(h, RotatingFileHandler) for h in root_logger.handlers):
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=3,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def initialize() -> FastMCP:
    """Set up directories, logging, and register tools. Returns the MCP server."""
    from iot_data.config import get_settings

    settings = get_settings()

    settings.data_dir.mkdir(parents=True, exist_ok=True)
    (settings.data_dir / "logs").mkdir(exist_ok=True)

    setup_logging(settings.log_level, settings.data_dir)

    from iot_data.tools.devices import register_device_tools

    register_device_tools(mcp)

    logger.info("IoT data MCP server initialized")
    return mcp
