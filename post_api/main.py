import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from post_api.core.config import Settings, get_settings
from post_api.core.errors import PostApiError
from post_api.core.logging import setup_logging
from post_api.db.store import FlatFileStore
from post_api.routers.posts import router as posts_router
from post_api.routers.upload import router as upload_router
from post_api.services.image_service import ImageIngestor
from post_api.services.storage_backends import LocalDiskStorage, build_storage_backend

logger = logging.getLogger(__name__)

CORS_ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]
CORS_ALLOWED_HEADERS = ["Content-Type", "Authorization", "X-Requested-With", "Accept", "Origin"]
CORS_EXPOSED_HEADERS = ["Content-Length", "Content-Type"]


def _error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PostApiError)
    async def handle_post_api_error(request: Request, exc: PostApiError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error_response(exc.message, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "query")
            return _error_response(f"Invalid parameter: {location}", 400)
        return _error_response("Invalid request", 400)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return _error_response(str(exc.detail), exc.status_code)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response("Unexpected error", 500)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, debug=settings.app_debug)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_ALLOWED_METHODS,
        allow_headers=CORS_ALLOWED_HEADERS,
        expose_headers=CORS_EXPOSED_HEADERS,
        max_age=86400,
    )
    _register_exception_handlers(app)

    backend = build_storage_backend(settings)
    app.state.settings = settings
    app.state.store = FlatFileStore(settings.data_file, settings.seed_data_file)
    app.state.image_ingestor = ImageIngestor(backend, max_bytes=settings.max_image_bytes)
    logger.info("Using %s image storage, data file %s", backend.name, settings.data_file)

    @app.get("/")
    def index():
        return {
            "message": settings.app_name,
            "endpoints": {
                "posts": "/api/posts",
                "upload": "/api/upload",
                "images": f"{settings.files_url_prefix}/",
            },
        }

    @app.options("/{path:path}")
    def preflight(path: str):
        return {"message": "OK"}

    app.include_router(posts_router)
    app.include_router(upload_router)

    if isinstance(backend, LocalDiskStorage):
        app.mount(
            backend.url_prefix,
            StaticFiles(directory=str(backend.files_dir), check_dir=False),
            name="files",
        )
    return app


app = create_app()
