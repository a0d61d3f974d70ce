import signal
import sys

import trio
from dotenv import load_dotenv
from kink import di

load_dotenv()  # import required here to support HARVEST_SETTINGS_FILENAME

from loguru import logger

from harvest.program import Program
from harvest.utils.cli import handle_args
from harvest.utils.nursery import Nursery

args = handle_args()

di[Program] = Program()


async def watch_signals() -> None:
    with trio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for _ in signals:
            logger.log("PROGRAM", "Exiting Gracefully.")
            di[Program].stop()
            return


async def main():
    if not di[Program].start():
        sys.exit(1)

    async with trio.open_nursery() as nursery:
        di[Nursery] = Nursery(nursery=nursery)
        nursery.start_soon(watch_signals)

        await di[Program].run(search_now=args.search_now)

        nursery.cancel_scope.cancel()

    logger.critical("Harvest has been stopped")

    sys.exit(0)


trio.run(main)
