import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from render_api.database import init_db
from render_api.routers import admin, edit, internal, status, submit

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up render API")
    init_db()
    yield
    logger.info("Shutting down render API")


app = FastAPI(title="Audio Render API", lifespan=lifespan)

_hostname = os.environ.get("SERVER_HOSTNAME", "")
_origins = [f"https://{_hostname}"] if _hostname else ["http://localhost", "http://localhost:8000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Admin-Token", "X-User-Id", "X-Edit-Payment-Token"],
)

app.include_router(submit.router)
app.include_router(internal.router)
app.include_router(admin.router)
app.include_router(status.router)
app.include_router(edit.router)


@app.get("/health")
def health():
    return {"ok": True}
