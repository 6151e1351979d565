"""
Stubly Data Layer Entry Point.

Bootstraps the dependency graph via :class:`~stubly.context.AppContext`,
restores any persisted authentication and prints the resulting state.

Usage::

    python main.py
"""

from __future__ import annotations

import atexit
import sys

from stubly.context import AppContext
from stubly.logger import StructuredLogger, get_logger


def main() -> int:
    """Wire dependencies, run auth initialisation and report the outcome."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting Stubly data layer...")

    ctx = AppContext()
    # Second safety net for unclean exits; close() is idempotent.
    atexit.register(ctx.close)

    with ctx:
        result = ctx.coordinator.initialize()
        state = ctx.state.snapshot()

        if not result.success:
            logger.error("Initialisation failed: %s", result.error)
            return 1

        if state.is_authenticated:
            print(f"Authenticated ({state.mode}) as {ctx.state.current_username}")
        else:
            print("Not authenticated.")

        if ctx.mirror_db.is_initialized:
            last_sync = ctx.services["sync_reconciler"].get_last_sync()
            print(f"Last full sync: {last_sync or 'never'}")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        pass
