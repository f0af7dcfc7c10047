"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from facility_uploads.config import settings
from facility_uploads.database import engine, get_db, init_models
from facility_uploads.services.upload_errors import UploadError

logger = logging.getLogger(__name__)
logging.getLogger("facility_uploads").setLevel(settings.LOG_LEVEL.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, dispose the engine on shutdown."""
    await init_models()
    logger.info(
        f"Facility uploads API ready (upload folder {settings.UPLOAD_FOLDER}, "
        f"chunk size {settings.CHUNK_SIZE_BYTES}, max facilities {settings.MAX_FACILITIES})"
    )

    yield

    await engine.dispose()


app = FastAPI(
    title="Facility Uploads API",
    version="1.0.0",
    description="Single-shot and resumable uploads of facility PostgreSQL dumps.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(UploadError)
async def upload_error_handler(request: Request, exc: UploadError):
    """Map upload pipeline errors to JSON responses with recovery context."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Register routers
from facility_uploads.routes.resumable import router as resumable_router
from facility_uploads.routes.facilities import router as facilities_router
app.include_router(resumable_router)
app.include_router(facilities_router)


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("facility_uploads.main:app", host="0.0.0.0", port=settings.API_PORT)
