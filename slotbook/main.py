import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from starlette.concurrency import run_in_threadpool
from slotbook.db.init_db import create_database
from slotbook.db.base import Base
from slotbook.db.session import engine, SessionLocal
from slotbook.core.config import settings
from slotbook.core.exceptions import ReservationError
from slotbook.api.v1.router import api_router
from slotbook.services.orchestrator import ReservationOrchestrator
from slotbook.services.payment_gateway import get_payment_gateway
from slotbook.utils.bookings import complete_finished_bookings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _complete_finished_bookings() -> int:
    orchestrator = ReservationOrchestrator(get_payment_gateway())
    db = SessionLocal()
    try:
        return complete_finished_bookings(db, orchestrator)
    finally:
        db.close()


async def _booking_completion_loop(interval: int) -> None:
    """Background task: complete bookings whose slot has ended, every `interval` seconds."""
    while True:
        try:
            count = await run_in_threadpool(_complete_finished_bookings)
            if count:
                logger.info("Completed %d finished booking(s).", count)
        except Exception:
            logger.exception("Error during booking completion sweep.")
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Ensure DB exists and create tables
    if settings.CREATE_DATABASE_ON_STARTUP:
        create_database()
    Base.metadata.create_all(bind=engine)

    completion_task = None
    if settings.SLOT_SWEEP_INTERVAL_SECONDS > 0:
        completion_task = asyncio.create_task(
            _booking_completion_loop(settings.SLOT_SWEEP_INTERVAL_SECONDS)
        )
    yield

    # Shutdown: cancel background task
    if completion_task is not None:
        completion_task.cancel()
        try:
            await completion_task
        except asyncio.CancelledError:
            pass


from fastapi.middleware.cors import CORSMiddleware

app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(api_router, prefix=settings.API_V1_STR)

@app.get("/")
def read_root():
    return {"Hello": "SlotBook"}
