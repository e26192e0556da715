import logging
import sys
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

import crm_assistant.models  # noqa: F401
from crm_assistant.api.assistant import router as assistant_router
from crm_assistant.api.events import router as events_router
from crm_assistant.api.stages import router as stages_router
from crm_assistant.auth import require_user
from crm_assistant.config import settings
from crm_assistant.database import SessionLocal, engine
from crm_assistant.services.seed import seed_deal_stages

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.seed_deal_stages:
        async with SessionLocal() as db:
            created = await seed_deal_stages(db)
        logger.info("Startup seed created %d deal stages.", created)
    yield
    await engine.dispose()


app = FastAPI(
    title="CRM Assistant",
    description="Conversational assistant for CRM records",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.include_router(assistant_router)
app.include_router(stages_router, dependencies=[Depends(require_user)])
app.include_router(events_router, dependencies=[Depends(require_user)])


@app.get("/health")
async def health() -> dict:
    status = "ok"
    db_status = "ok"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check database query failed")
        status = "degraded"
        db_status = "error"

    return {
        "status": status,
        "db": db_status,
        "capabilities": {
            "model": bool(settings.anthropic_api_key),
            "web_search": bool(settings.tavily_api_key),
        },
    }


@app.exception_handler(Exception)
async def unhandled_exception_handler(_, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": str(exc),
            "mode": settings.environment,
        },
    )
