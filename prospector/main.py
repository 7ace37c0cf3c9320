import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from prospector.config import settings
from prospector.db.database import init_db
from prospector.routers import jobs, quota

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    worker_task = None
    if settings.run_worker_in_app:
        from prospector.worker.engine import ProspectWorker

        worker = ProspectWorker()
        worker_task = asyncio.create_task(worker.run())
        logger.info("In-process prospect worker enabled")
    yield
    if worker_task is not None:
        worker.stop()
        await worker_task


app = FastAPI(title="Prospector", version="1.0.0", lifespan=lifespan)

app.include_router(jobs.router, prefix="/api/prospect/jobs", tags=["prospect-jobs"])
app.include_router(quota.router, prefix="/api/prospect/quota", tags=["prospect-quota"])


@app.get("/api/prospect/ping")
async def ping():
    return {"ok": True}
