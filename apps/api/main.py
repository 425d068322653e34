import logging
from contextlib import asynccontextmanager
from pathlib import Path
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from packages.settings import get_settings
from packages.storage import db
from packages.storage.db import StorageError

from apps.api.dependencies import get_catalog_service
from apps.api.routers import assistant, parts, recognize

load_dotenv()
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()
Path(settings.media_root).mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        get_catalog_service().initialize()
    except StorageError as e:
        logger.error(f"Catalog storage unavailable at startup: {e}")
    yield


app = FastAPI(title="AIdentify API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(parts.router, prefix="/parts", tags=["parts"])
app.include_router(recognize.router, prefix="/recognize", tags=["recognition"])
app.include_router(assistant.router, prefix="/assistant", tags=["assistant"])
app.mount("/media", StaticFiles(directory=settings.media_root), name="media")


@app.get("/")
def root():
    return {"status": "ok", "message": "AIdentify API"}


@app.get("/health")
def health():
    current = get_settings()
    database = db.ping()
    return {
        "status": "healthy" if database else "degraded",
        "database": database,
        "ai_configured": current.ai_configured,
        "image_store": "supabase" if current.supabase_configured else "local",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
