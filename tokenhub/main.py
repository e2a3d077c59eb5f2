"""Main FastAPI application entry point."""

import logging
from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session
from typing import Optional

from tokenhub import __version__
from tokenhub.config import settings
from tokenhub.database.database import init_db, get_db
from tokenhub.api.tokens import router as tokens_router, usage_router
from tokenhub.api.groups import router as groups_router
from tokenhub.api.channels import router as channels_router
from tokenhub.services.encryption_service import EncryptionService
from tokenhub.services.group_settings import group_settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Token Hub",
    description="API token management and group-priority channel selection",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tokens_router)
app.include_router(usage_router)
app.include_router(groups_router)
app.include_router(channels_router)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    message: Optional[str] = None


@app.on_event("startup")
async def startup_event():
    """Validate encryption, initialize the database and load group configuration."""
    # Exits if the key is missing or invalid
    EncryptionService()
    init_db()
    if settings.group_config_path:
        group_settings.load_from_yaml(settings.group_config_path)
    else:
        logger.warning("GROUP_CONFIG_PATH not set, using built-in group defaults")


@app.get("/")
async def root():
    return {"message": "Token Hub API", "version": __version__}


@app.get("/api/health", response_model=HealthResponse)
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint.

    Checks database connectivity.
    """
    try:
        db.execute(text("SELECT 1"))
        return HealthResponse(status="healthy", database="connected")
    except Exception as e:
        return HealthResponse(status="unhealthy", database="disconnected", message=str(e))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tokenhub.main:app", host=settings.app_host, port=settings.app_port)
