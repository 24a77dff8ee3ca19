"""Perkcycle - Perk Cycle Tracker API."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from perkcycle.config import get_settings
from perkcycle.logging_config import configure_logging
from perkcycle.services.coordinator import OptimisticUpdateCoordinator

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: Create tables and load the card catalog
    from perkcycle.database import Base, engine, SessionLocal
    from perkcycle.services.catalog_loader import load_catalog

    # Import all models so they're registered with Base
    from perkcycle import models  # noqa: F401

    configure_logging(settings.log_level)

    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        load_catalog(db)
    finally:
        db.close()

    app.state.coordinator = OptimisticUpdateCoordinator(settings.undo_window_seconds)

    yield


app = FastAPI(
    title=settings.app_name,
    description="Track recurring card perks and never let a cycle lapse",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}


# Import and include routers
from perkcycle.api import cards, notifications, perks  # noqa: E402

app.include_router(cards.router, prefix="/api")
app.include_router(perks.router, prefix="/api")
app.include_router(notifications.router, prefix="/api")
