"""Print a remote session's details as JSON.

Usage: taskbridge-check-session <session_id>
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from taskbridge.config import Config
from taskbridge.errors import BridgeError
from taskbridge.logging_config import setup_logging
from taskbridge.services.task_client import TaskClient

logger = logging.getLogger(__name__)


async def _fetch(config: Config, session_id: str) -> dict:
    client = TaskClient(config.api_key, api_base=config.api_base, timeout=config.request_timeout)
    try:
        return await client.get_session_details(session_id)
    finally:
        await client.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="taskbridge-check-session",
        description="Fetch and print a remote session's details.",
    )
    parser.add_argument("session_id", help="Remote session ID")
    args = parser.parse_args(argv)

    setup_logging()
    config = Config.from_env()
    if not config.api_key:
        logger.error("DEVIN_API_KEY environment variable is not set.")
        return 1

    logger.info("Checking status for session: %s", args.session_id)
    try:
        details = asyncio.run(_fetch(config, args.session_id))
    except BridgeError as e:
        logger.error("Failed to get details for session %s: %s", args.session_id, e)
        return 1

    print(json.dumps(details, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
