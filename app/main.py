import time
import uuid
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from app.api.chat import router as chat_router
from app.api.internal import router as internal_router
from app.api.models import router as models_router
from app.api.providers import router as providers_router
from app.api.widget import router as widget_router
from app.api.widgets import router as widgets_router
from app.core.config import settings
from app.core.logging import setup_logging, logger
from app.utils.redis_client import redis_client

# Setup structured logging
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await redis_client.connect()
    logger.info("application_startup", environment=settings.ENVIRONMENT)
    yield
    await redis_client.close()
    logger.info("application_shutdown")

app = FastAPI(
    title="AI Chat Widget Platform",
    version="0.1.0",
    lifespan=lifespan
)

# Widgets are embedded on arbitrary third-party sites; tenant routes authenticate with x-api-key
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["x-api-key", "Content-Type", "Authorization"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    if request.url.path == "/health":
        return await call_next(request)

    request_id = str(uuid.uuid4())
    start_time = time.time()

    with logger.contextualize(request_id=request_id, path=request.url.path, method=request.method):
        logger.info("request_started")

        try:
            response = await call_next(request)

            formatted_process_time = "{0:.2f}ms".format((time.time() - start_time) * 1000)
            logger.info(
                "request_finished",
                status_code=response.status_code,
                latency=formatted_process_time,
            )

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = formatted_process_time
            return response
        except Exception as e:
            logger.exception(
                "request_failed",
                error=str(e),
                latency="{0:.2f}ms".format((time.time() - start_time) * 1000)
            )
            raise

# Routes
app.include_router(widget_router, prefix="/v1/widget", tags=["public"])
app.include_router(providers_router, prefix="/v1/providers", tags=["providers"])
app.include_router(models_router, prefix="/v1/ai-models", tags=["models"])
app.include_router(widgets_router, prefix="/v1/widgets", tags=["widgets"])
app.include_router(chat_router, prefix="/v1/chat", tags=["chat"])
app.include_router(internal_router, prefix="/v1/internal", tags=["internal"])


@app.get("/")
async def root():
    return {"status": "ok", "message": "Welcome to the AI Chat Widget Platform"}


@app.get("/health")
async def health():
    return {"status": "ok"}
