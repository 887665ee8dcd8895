# backend/tutorbook/main.py
from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Dict

from fastapi import APIRouter, FastAPI, Response

from .core.config import settings
from .core.logging_config import configure_logging
from .database import Base, engine
from .errors import register_error_handlers
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes.v1 import admin as admin_v1
from .routes.v1 import lessons as lessons_v1
from .routes.v1 import payments as payments_v1

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

API_TITLE = "TutorBook API"
API_VERSION = "1.0.0"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Starting %s (%s)", API_TITLE, settings.environment)
    if settings.environment != "production":
        # Production schemas are provisioned outside the app.
        Base.metadata.create_all(bind=engine)
    if not settings.stripe_configured:
        logger.warning("Stripe secret key is not configured; payment calls will fail")
    yield
    logger.info("Shutting down %s", API_TITLE)


app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)
register_error_handlers(app)

api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(lessons_v1.router, prefix="/lessons")
api_v1.include_router(lessons_v1.tutors_router, prefix="/tutors")
api_v1.include_router(payments_v1.router, prefix="/payments")
api_v1.include_router(admin_v1.router, prefix="/admin")
app.include_router(api_v1)


@app.get("/health")
def health_check() -> Dict[str, str]:
    return {"status": "healthy", "service": "tutorbook-api", "version": API_VERSION}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(prometheus_metrics.get_metrics(), media_type=prometheus_metrics.content_type)
