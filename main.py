"""
Guest List Check-In Roster - FastAPI Backend
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from guestlist.core.config import settings
from guestlist.core.db import engine, Base
from guestlist.api import routes_admin, routes_guest
from guestlist.api.dependencies import get_guest_store
from guestlist.services.repositories import GuestStore, use_firestore
from guestlist.utils.responses import register_exception_handlers, success_response

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create SQL tables on startup; Firestore needs no schema"""
    if use_firestore():
        logger.info("Using Firestore storage")
    else:
        Base.metadata.create_all(bind=engine)
        logger.info("SQL storage ready at %s", engine.url.render_as_string(hide_password=True))
    yield
    logger.info("Application shutdown")

app = FastAPI(
    title="Guest List Check-In Roster",
    description="Check-in ledger and roster queries for event ushers",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(routes_guest.router, prefix="/guests", tags=["guests"])
app.include_router(routes_admin.router, prefix="/admin", tags=["admin"])

@app.get("/health", tags=["health"])
def health(store: GuestStore = Depends(get_guest_store)):
    """Unauthenticated liveness check; 503 when storage is unreachable"""
    store.ping()
    return success_response(
        message="Service is healthy",
        data={
            "storage": "firestore" if use_firestore() else "sql",
            "timestamp": datetime.utcnow().isoformat(),
        }
    )

# Run with Uvicorn directly; under Gunicorn use `uvicorn.workers.UvicornWorker`.

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="127.0.0.1",
        port=8000,
        reload=True
    )
