import asyncio
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request

from dal.image_dal import ImageDAL
from routes.optimizer_route import router as optimizer_router
from services.image_optimizer import ImageOptimizer
from services.image_transform import ImageTransformer
from services.optimizer_metrics import OptimizerMetrics
from services.optimizer_scheduler import BackoffPolicy, OptimizerScheduler
from utils.database_init import AsyncDatabaseInitializer
from utils.logging_config import configure_logging
from utils.settings import OptimizerSettings

load_dotenv()  # Load environment variables from .env file if present

LOGGER = logging.getLogger(__name__)


def build_scheduler(
    db_initializer: AsyncDatabaseInitializer,
    settings: OptimizerSettings,
    metrics: OptimizerMetrics,
) -> OptimizerScheduler:
    """Wire the transform engine, batch processor and scheduler from settings."""
    stop_event = asyncio.Event()
    transformer = ImageTransformer(
        max_size=(settings.max_width, settings.max_height),
        quality=settings.webp_quality,
        min_gain_ratio=settings.min_gain_ratio,
    )
    optimizer = ImageOptimizer(
        ImageDAL(db_initializer),
        transformer.optimize,
        metrics=metrics,
        max_workers=settings.workers,
        max_failures=settings.max_failures,
        use_processes=settings.use_processes,
        stop_event=stop_event,
    )
    policy = BackoffPolicy(
        error_delay=settings.error_delay,
        partial_delay=settings.partial_delay,
        idle_delay=settings.idle_delay,
    )
    return OptimizerScheduler(
        optimizer,
        batch_size=settings.batch_size,
        initial_batch_size=settings.initial_batch_size,
        policy=policy,
        stop_event=stop_event,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - the SQLite image store (at DATABASE_DIR/app.db, kept across restarts)
      - the background image optimizer task
    and attach them to `app.state`.

    On shutdown the optimizer is asked to stop: rows already being
    transformed are persisted, the rest of the batch is left for the next
    start, and the task is awaited before the process exits.
    """
    configure_logging()

    db_initializer = AsyncDatabaseInitializer()
    await db_initializer.ensure_database()
    app.state.db_initializer = db_initializer

    settings = OptimizerSettings.from_env()
    metrics = OptimizerMetrics()
    app.state.optimizer_settings = settings
    app.state.optimizer_metrics = metrics
    app.state.optimizer_task = None

    scheduler = None
    if settings.enabled:
        scheduler = build_scheduler(db_initializer, settings, metrics)
        app.state.optimizer_task = asyncio.create_task(scheduler.run(), name="image-optimizer")
    else:
        LOGGER.info("optimizer: disabled by IMAGE_OPT_ENABLED")

    try:
        yield
    finally:
        task = app.state.optimizer_task
        if scheduler is not None and task is not None:
            scheduler.stop()
            await task


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check reporting store and optimizer presence.
        """
        has_db = hasattr(request.app.state, "db_initializer")
        task = getattr(request.app.state, "optimizer_task", None)
        return {
            "ok": True,
            "db_initialized": has_db,
            "optimizer_running": task is not None and not task.done(),
        }

    # Register application routers
    app.include_router(optimizer_router)

    return app


app = create_app()
