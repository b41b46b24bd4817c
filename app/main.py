import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import Settings, get_settings
from app.core.exceptions import StorePersistenceError
from app.db.request_store import build_request_store
from app.routers import requests
from app.services.request_service import RequestService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def handle_store_persistence_error(request: Request, exc: StorePersistenceError) -> JSONResponse:
    logger.error(f"Persistence failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "detail": "The request could not be saved. Please try again.",
            "retryable": True,
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    request_service: Optional[RequestService] = None,
) -> FastAPI:
    app_settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = None
        if request_service is not None:
            app.state.request_service = request_service
        else:
            logger.info(f"Loading request store ({app_settings.REQUEST_STORE_BACKEND} backend)...")
            try:
                store = build_request_store(app_settings)
            except Exception as e:
                logger.error(f"Startup Failure: {e}")
                raise
            app.state.request_service = RequestService.from_settings(app_settings, store)
            logger.info(f"Request store loaded with {len(store.all_ids())} requests.")
            if not app_settings.smtp_configured:
                logger.warning("SMTP credentials are not configured; notification emails will not be sent.")
        yield
        logger.info("Shutting down...")
        if store is not None:
            store.close()

    app = FastAPI(title=app_settings.PROJECT_NAME, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)

        if process_time > 0.5:
            logger.warning(f"Slow Request: {request.method} {request.url.path} took {process_time:.4f}s")

        return response

    app.add_exception_handler(StorePersistenceError, handle_store_persistence_error)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(requests.router, prefix=app_settings.API_V1_STR)
    return app


app = create_app()
