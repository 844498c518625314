# marketplace_analytics/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from filelock import FileLock, Timeout
from pydantic import ValidationError

from marketplace_analytics.api.v1.router import api_router_v1
from marketplace_analytics.core.config import settings
from marketplace_analytics.core.db import AsyncSessionLocal, engine, init_models
from marketplace_analytics.services.competitor_analysis import CompetitorAnalysisService
from marketplace_analytics.services.event_collector import EventCollector
from marketplace_analytics.services.event_log import SqlAlchemyEventLog
from marketplace_analytics.services.geolocation import GeolocationService
from marketplace_analytics.services.insights import InsightComposer
from marketplace_analytics.services.marketplace import MarketplaceService
from marketplace_analytics.services.metrics import MetricsAggregator

# --- Настройка логирования ---
log_level = settings.LOGGING_LEVEL.upper()
logging.basicConfig(
    level=log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)
logger.info(f"Starting application with log level: {log_level}")


# --- Lifespan для управления ресурсами ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup: Initializing resources...")

    # Таблицы создает только один воркер
    lock = FileLock("analytics_startup.lock", timeout=10)
    try:
        with lock:
            await init_models(engine)
    except Timeout:
        logger.info("Could not acquire lock, another worker is creating tables. Skipping.")

    event_log = SqlAlchemyEventLog(AsyncSessionLocal)
    marketplace_service = MarketplaceService()
    geolocation_service = GeolocationService()
    metrics_aggregator = MetricsAggregator(event_log, marketplace_service)
    competitor_service = CompetitorAnalysisService(marketplace_service, metrics_aggregator)
    event_collector = EventCollector(event_log)

    app.state.marketplace_service = marketplace_service
    app.state.geolocation_service = geolocation_service
    app.state.metrics_aggregator = metrics_aggregator
    app.state.competitor_service = competitor_service
    app.state.insight_composer = InsightComposer(metrics_aggregator, geolocation_service, competitor_service)
    app.state.event_collector = event_collector

    # Очередь, таймер и кэши живут в памяти каждого воркера отдельно
    event_collector.start()
    logger.info("Analytics services initialized in current worker.")

    try:
        yield
    finally:
        logger.info("Application shutdown in this worker: Cleaning up resources...")
        await event_collector.stop(drain=True)
        await marketplace_service.close_client()
        await geolocation_service.close_client()
        await engine.dispose()
        logger.info("Resources cleaned up successfully in this worker.")


# --- Создание экземпляра FastAPI ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Сбор событий активности и аналитика объявлений маркетплейса.",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

# --- Настройка CORS ---
origins = settings.CORS_ORIGINS
logger.info(f"Allowed CORS origins: {origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Обработчики ошибок ---
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Request validation error: {exc.errors()} for {request.method} {request.url}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Ошибка валидации входных данных", "errors": jsonable_errors(exc.errors())},
    )


@app.exception_handler(ValidationError)
async def pydantic_validation_exception_handler(request: Request, exc: ValidationError):
    logger.error(f"Pydantic model validation error: {exc.errors()} for {request.method} {request.url}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Ошибка валидации данных"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception: {exc} for {request.method} {request.url}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Внутренняя ошибка сервера."},
    )


def jsonable_errors(errors):
    # В ctx ошибок pydantic бывают исключения, которые не сериализуются в JSON
    return [{k: v for k, v in error.items() if k != "ctx"} for error in errors]


# --- Подключение роутеров ---
app.include_router(api_router_v1, prefix=settings.API_V1_STR)
logger.info(f"Included API router at prefix: {settings.API_V1_STR}")


# --- Корневой эндпоинт ---
@app.get("/", tags=["Root"], summary="Health check")
async def read_root():
    """Простой эндпоинт для проверки работоспособности API."""
    return {"status": "ok", "project": settings.PROJECT_NAME}
