import asyncio
import signal
import sys

from keydoor import authorization_loop, config, keydoor_logging
from keydoor.common.exception import ConfigurationError
from keydoor.config import DoorConfig

logger = keydoor_logging.init_logging("door")


def _log_startup_info(door_config: DoorConfig) -> None:
    logger.info("Starting keydoor for door %d...", door_config.door_id)
    logger.info("Identity bridge: %s, door controller: %s", door_config.bridge_url, door_config.actuator_url)
    if door_config.unlock_duration is None:
        logger.info("Unlock duration: hardware default")
    else:
        logger.info("Unlock duration: %d seconds", door_config.unlock_duration)


async def _serve(door_config: DoorConfig) -> None:
    task = asyncio.ensure_future(authorization_loop.run(door_config))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, task.cancel)

    try:
        await task
    except asyncio.CancelledError:
        logger.info("keydoor stopped")


def main() -> None:
    try:
        door_config = config.load_door_config()
        _log_startup_info(door_config)
        asyncio.run(_serve(door_config))
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        logger.exception(e)
        sys.exit(1)
