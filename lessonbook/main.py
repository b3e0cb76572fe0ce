import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from lessonbook.core import config
from lessonbook.core.exceptions import register_error_handlers
from lessonbook.database import Base, engine, ensure_reservation_schema
from lessonbook.models import availability, purchase, reservation, user  # noqa: F401
from lessonbook.routes import reservation_routes, schedule_routes
from lessonbook.services.expiration_sweeper import ExpirationSweeperWorker

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_reservation_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.validate_runtime_config()
    initialize_database()

    sweeper: ExpirationSweeperWorker | None = None
    sweeper_task: asyncio.Task | None = None
    if config.SWEEPER_ENABLED:
        sweeper = ExpirationSweeperWorker()
        sweeper_task = asyncio.create_task(asyncio.to_thread(sweeper.run))

    yield

    if sweeper is not None and sweeper_task is not None:
        sweeper.stop()
        with contextlib.suppress(Exception):
            await sweeper_task


app = FastAPI(title='Lessonbook Scheduling API', lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

register_error_handlers(app)


@app.get('/')
def root():
    return {'status': 'Lessonbook Scheduling API Running'}


app.include_router(schedule_routes.router)
app.include_router(reservation_routes.router)
