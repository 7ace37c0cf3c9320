import asyncio
import logging
import signal

from prospector.config import settings
from prospector.db.database import init_db
from prospector.worker.engine import ProspectWorker


async def _serve():
    await init_db()
    worker = ProspectWorker()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)
    await worker.run()


def main():
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
