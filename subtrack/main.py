import logging

from fastapi import FastAPI
from subtrack.database import create_db_and_tables
from subtrack.config import settings
from subtrack.routes import (
    admin_cancellation,
    cancellations,
    health,
    webhooks,
)

from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run DB creation ONLY in local
    if settings.ENV == "local":
        create_db_and_tables()
    yield

app = FastAPI(title="SubTrack Cancellation API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cancellations.router, prefix="/cancellations", tags=["Cancellations"])
app.include_router(admin_cancellation.router, prefix="/admin/cancellations", tags=["Admin Cancellations"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get("/")
def root():
    return {
        "service": "subtrack-cancellations",
        "status": "ok",
    }
