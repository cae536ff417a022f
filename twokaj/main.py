import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from twokaj import __version__
from twokaj.api import auth, gallery, listings, messages, sync
from twokaj.core.config import Settings, get_settings
from twokaj.core.logging import setup_logging
from twokaj.db.base import Base
from twokaj.db.session import make_engine, make_sessionmaker

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    """
    Build the API application.

    The caller may pass its own engine (tests use an in-memory one); otherwise
    one is created from DATABASE_URL. Tables are created if missing.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    engine = engine or make_engine(settings.DATABASE_URL)
    Base.metadata.create_all(bind=engine)

    app = FastAPI(
        title="Twokaj API",
        description="Offline-first bartering marketplace backend",
        version=__version__
    )
    app.state.engine = engine
    app.state.sessionmaker = make_sessionmaker(engine)

    # CORS
    origins = settings.ALLOWED_ORIGINS.split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(auth.router)
    app.include_router(listings.router)
    app.include_router(messages.router)
    app.include_router(gallery.router)
    app.include_router(sync.router)

    # Health check, also used by devices as their connectivity check
    @app.get("/health")
    def health_check():
        return {"status": "healthy"}

    @app.get("/")
    def root():
        return {
            "message": f"Twokaj API v{__version__}",
            "endpoints": {
                "auth": "/auth",
                "listings": "/listings",
                "messages": "/messages",
                "gallery": "/gallery",
                "sync": "/sync-batch",
                "docs": "/docs"
            }
        }

    logger.info("Twokaj API ready (database: %s)", engine.url.render_as_string(hide_password=True))
    return app
