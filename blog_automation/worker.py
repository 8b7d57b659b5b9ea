"""Worker mode entrypoint: run the job dispatcher without the web server."""

import asyncio
import sys

from blog_automation.config import config
from blog_automation.lib.logger import configure_logger
from blog_automation.services.infrastructure.startup_service import run_standalone

logger = configure_logger(__name__)

_ = config


async def main():
    logger.info("Starting blog automation in worker mode...")

    try:
        await run_standalone()
    except KeyboardInterrupt:
        logger.info("Worker mode interrupted by user")
    except Exception as e:
        logger.error(f"Critical error in worker mode: {e}", exc_info=True)
        sys.exit(1)
    finally:
        logger.info("Worker mode shutdown complete")


def run():
    """Console script entrypoint."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
