from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
import logging

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from ..config import EngineSettings
from ..core.session import get_session_manager
from ..infrastructure.events import load_event_client
from ..observability.metrics import metrics_middleware_factory
from .routers.prompts import router as prompts_router

load_dotenv()  # .env may carry provider keys, MONGO_URL, REDIS_URL

logger = logging.getLogger("prompt_engine.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("Shutting down open prompt sessions")
    # Pending debounced saves are dropped with their sessions; in-flight writes finish.
    provider = app.dependency_overrides.get(get_session_manager, get_session_manager)
    await provider().shutdown()


app = FastAPI(title="Prompt Engine API", version="0.1.0", lifespan=lifespan)

app.middleware("http")(metrics_middleware_factory())

app.include_router(prompts_router)
app.include_router(prompts_router, prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"name": "Prompt Engine API", "version": "0.1.0"}


@app.get("/health")
def health():
    settings = EngineSettings.from_env()
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "store": settings.store_impl,
            "events": "redis" if load_event_client() is not None else "disabled",
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
