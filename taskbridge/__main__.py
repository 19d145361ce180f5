"""Entry point: python -m taskbridge"""

import asyncio
import logging
import signal
import sys

from taskbridge.app import Bridge
from taskbridge.config import Config
from taskbridge.logging_config import setup_logging

logger = logging.getLogger("taskbridge")


def _log_unhandled(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exc = context.get("exception")
    logger.error("Unhandled async error: %s", context.get("message"), exc_info=exc)


async def _serve(config: Config) -> None:
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_log_unhandled)

    stop_event = asyncio.Event()

    def _request_stop(signame: str) -> None:
        logger.info("%s received. Stopping all monitoring and shutting down.", signame)
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_stop, sig.name)

    await Bridge(config).run(stop_event)


def main() -> None:
    setup_logging()
    config = Config.from_env()

    missing = config.missing()
    if missing:
        logger.error("Required settings not set: %s", ", ".join(missing))
        sys.exit(1)

    logger.info("Starting task bridge...")
    logger.info("  Task API: %s", config.api_base)
    logger.info("  DB path: %s", config.db_path)
    logger.info("  Poll interval: %ds", config.poll_interval)
    logger.info("  Resume monitoring: %s", config.resume_monitoring)

    asyncio.run(_serve(config))
    sys.exit(0)


if __name__ == "__main__":
    main()
