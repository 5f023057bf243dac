import asyncio
import sys

from loguru import logger
from pydantic import ValidationError

from liquidity_sniper.chains.evm import StreamClosed
from liquidity_sniper.config import AppSettings
from liquidity_sniper.runner import run


def main():
    try:
        settings = AppSettings()
    except ValidationError as e:
        logger.error("Invalid configuration: {}", e)
        sys.exit(1)
    logger.remove()
    logger.add(lambda msg: print(msg, end=""), level=settings.log_level)

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info("Sniper interrupted; shutting down.")
    except StreamClosed as e:
        logger.error("WS closed: {}", e)
        sys.exit(1)
    except Exception as e:
        logger.exception("Error in main: {}", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
