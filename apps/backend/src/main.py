import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from src.core.cache import create_cache
from src.core.config import get_settings
from src.core.db import get_engine, init_db
from src.core.logging import setup_logging
from src.api.dependencies import close_http_client

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await init_db(get_engine())
    app.state.cache = create_cache(settings.redis_url)
    yield
    await close_http_client()
    if app.state.cache is not None:
        await app.state.cache.close()


app = FastAPI(
    title="Registry Index API",
    description="Search across indexed awesome-list registries",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(",") if settings.cors_origins else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Store error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.get("/health")
async def health_check():
    return {"status": "ok"}


from src.api.routes import admin, search

app.include_router(search.router, tags=["search"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])
