from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from crmguard.api.errors import register_exception_handlers
from crmguard.api.routes import router as api_router
from crmguard.core.config import get_settings
from crmguard.logging import configure_logging
from crmguard.middleware.correlation_id import CorrelationIdMiddleware
from crmguard.middleware.request_logging import RequestLoggingMiddleware
from crmguard.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("crmguard.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("system_started", extra={"status": settings.app_env})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel("crmguard", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
