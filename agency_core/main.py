from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from agency_core.api.routes import router as api_router
from agency_core.core.config import get_settings
from agency_core.core.database import Base, SessionLocal, engine
from agency_core.directory.seed import seed_role_templates
from agency_core.logging import configure_logging
from agency_core.middleware.correlation_id import CorrelationIdMiddleware
from agency_core.middleware.request_logging import RequestLoggingMiddleware
from agency_core.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("agency_core.lifecycle")


def bootstrap_directory() -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        seed_role_templates(session)


@asynccontextmanager
async def lifespan(app: FastAPI):
    bootstrap_directory()
    logger.info("directory.ready")
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel("agency-core", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
