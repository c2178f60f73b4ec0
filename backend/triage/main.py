"""
Process entry point.

Exit code 0 whenever a diagnosis was produced, whatever happened to the fix,
the pull request and the notifications. Exit code 1 when the configuration is
invalid or no diagnosis could be produced.
"""

import asyncio
import sys

from triage.errors import ConfigError, TriageError
from triage.integrations.connection_config import TriageConfig
from triage.orchestrator import TriagePipeline
from triage.utils.logger import get_logger

logger = get_logger("triage")


async def run(config: TriageConfig) -> int:
    pipeline = TriagePipeline.from_config(config)
    try:
        await pipeline.run()
    except TriageError as e:
        logger.error("Failed to analyze", extra={"run_id": config.run_id, "action": "fatal", "extra": str(e)})
        return 1
    finally:
        await pipeline.aclose()
    logger.info("Successfully completed triage analysis", extra={"run_id": config.run_id})
    return 0


def main() -> None:
    try:
        config = TriageConfig.from_env()
    except ConfigError as e:
        logger.error("Initialization failed", extra={"action": "config_error", "extra": str(e)})
        sys.exit(1)
    sys.exit(asyncio.run(run(config)))


if __name__ == "__main__":
    main()
