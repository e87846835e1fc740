"""Orchestration Core - process entry point.

Boots the system from ``SYSTEM_CONFIG_PATH`` and keeps it running so
scheduled automations fire, until SIGINT/SIGTERM.

    python -m app.main [--tenant SLUG] [--strict]
"""

import argparse
import asyncio
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import structlog

from app.config import get_settings
from core.logging_config import setup_logging
from loader.system_loader import SystemLoader

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(
    tenant_slug: Optional[str] = None,
    strict: Optional[bool] = None,
) -> AsyncIterator[SystemLoader]:
    """System startup and shutdown."""
    # Startup
    settings = get_settings()
    setup_logging()
    settings.validate_settings()

    system = SystemLoader(settings=settings)
    await system.initialize(tenant_slug=tenant_slug, strict=strict)
    logger.info("Orchestration core started", **_startup_summary(system))

    try:
        yield system
    finally:
        # Shutdown
        errors = await system.destroy()
        if errors:
            logger.warning("Shutdown completed with errors", errors=errors)
        else:
            logger.info("Orchestration core stopped")


def _startup_summary(system: SystemLoader) -> dict:
    info = system.get_system_info()
    return {
        "name": info["name"],
        "environment": info["environment"],
        "tenant": info["tenant"],
        "tenants": info["tenants"],
        **{kind: summary["total"] for kind, summary in info["components"].items()},
    }


async def serve(tenant_slug: Optional[str] = None, strict: Optional[bool] = None) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; rely on KeyboardInterrupt
            pass

    async with lifespan(tenant_slug=tenant_slug, strict=strict):
        await stop.wait()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run the orchestration core")
    parser.add_argument("--tenant", dest="tenant_slug", help="Slug of the tenant to load as current")
    parser.add_argument("--strict", action="store_true", default=None, help="Abort boot on any component failure")
    args = parser.parse_args(argv)
    try:
        asyncio.run(serve(tenant_slug=args.tenant_slug, strict=args.strict))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
