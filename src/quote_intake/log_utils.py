"""
Logging helpers shared by the pipeline modules.
"""

import logging
import time
from contextlib import asynccontextmanager


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once per process."""
    if getattr(setup_logging, "_configured", False):
        return
    logging.basicConfig(
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )
    setup_logging._configured = True


def _format_context(context: dict) -> str:
    if not context:
        return ""
    return " (" + ", ".join(f"{key}={value}" for key, value in context.items()) + ")"


@asynccontextmanager
async def log_operation(logger: logging.Logger, name: str, **context):
    """Log start, duration and outcome of a pipeline step."""
    start = time.perf_counter()
    logger.info(f"Starting operation: {name}{_format_context(context)}")
    try:
        yield
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.error(f"Failed operation: {name} after {duration_ms:.0f}ms", exc_info=True)
        raise
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(f"Completed operation: {name} in {duration_ms:.0f}ms")
