import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.errors import PyMongoError

from courier.core.errors import CourierError, MediaUploadError, StoreError
from courier.core.logging import configure_logging
from courier.core.settings import settings
from courier.database.connection import close_mongo_connection, connect_to_mongo, get_database, mongo_db_dependency
from courier.repositories.message_repository import MessageRepository
from courier.routers.chat import router as chat_router
from courier.routers.conversations import router as conversations_router


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    configure_logging()
    await connect_to_mongo()
    await MessageRepository(get_database()).ensure_indexes()
    os.makedirs(settings.media_root, exist_ok=True)
    try:
        yield
    finally:
        await close_mongo_connection()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _failure(message: str) -> JSONResponse:
    # failures travel in the envelope, not the status code
    return JSONResponse(status_code=200, content={"success": False, "message": message})


@app.exception_handler(CourierError)
async def courier_error_handler(request: Request, exc: CourierError):
    if isinstance(exc, (StoreError, MediaUploadError)):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return _failure(exc.message)


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("%s %s store failure", request.method, request.url.path, exc_info=exc)
    return _failure(str(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}" for err in errors
    )
    return _failure(detail or "Invalid request")


app.include_router(chat_router)
app.include_router(conversations_router)

# uploads written by LocalMediaStore are served back from media_base_url
if settings.media_base_url.startswith("/"):
    app.mount(
        settings.media_base_url.rstrip("/"),
        StaticFiles(directory=settings.media_root, check_dir=False),
        name="media",
    )


@app.get("/")
async def root(db = Depends(mongo_db_dependency)):

    collections = await db.list_collection_names()
    return {"success": True, "collections": collections}
