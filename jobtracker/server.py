"""
HTTP/JSON API over the entity store.

Each entity type is a collection under /api/<type>. Every route requires a
bearer token; the verifier turns it into the caller id the store filters and
stamps with. Errors use one envelope: {"error": {"kind": ..., "message": ...}}.
"""

from typing import Any, Callable, Dict, Optional

import uvicorn
from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import __version__
from .errors import ErrorKind, StoreError, UnauthorizedError
from .identity import StaticTokenVerifier, parse_bearer
from .logger import get_logger
from .models import EntityType
from .store_service import EntityStore

logger = get_logger()

TokenVerifier = Callable[[str], Optional[str]]


def require_caller(request: Request) -> str:
    """Resolve the caller id from the Authorization header or fail with 401."""
    token = parse_bearer(request.headers.get("Authorization"))
    if not token:
        raise UnauthorizedError("Unauthorized: No token provided or incorrect format")
    caller_id = request.app.state.verifier(token)
    if not caller_id:
        raise UnauthorizedError("Unauthorized: Invalid token or user does not exist")
    return caller_id


def get_store(request: Request) -> EntityStore:
    return request.app.state.store


def _collection_router(entity_type: EntityType) -> APIRouter:
    router = APIRouter(tags=[entity_type.value])
    label = entity_type.label

    @router.get("")
    def list_entities(
        order: Optional[str] = None,
        caller_id: str = Depends(require_caller),
        store: EntityStore = Depends(get_store),
    ):
        return [e.to_record() for e in store.list_entities(entity_type, caller_id, order=order)]

    @router.post("", status_code=201)
    def create_entity(
        payload: Dict[str, Any] = Body(...),
        caller_id: str = Depends(require_caller),
        store: EntityStore = Depends(get_store),
    ):
        return store.create(entity_type, caller_id, payload).to_record()

    @router.get("/{entity_id}")
    def get_entity(
        entity_id: str,
        caller_id: str = Depends(require_caller),
        store: EntityStore = Depends(get_store),
    ):
        return store.get(entity_type, entity_id, caller_id).to_record()

    @router.put("/{entity_id}")
    def update_entity(
        entity_id: str,
        payload: Dict[str, Any] = Body(...),
        caller_id: str = Depends(require_caller),
        store: EntityStore = Depends(get_store),
    ):
        return store.update(entity_type, entity_id, caller_id, payload).to_record()

    @router.delete("/{entity_id}")
    def delete_entity(
        entity_id: str,
        caller_id: str = Depends(require_caller),
        store: EntityStore = Depends(get_store),
    ):
        deleted = store.delete(entity_type, entity_id, caller_id)
        return {"message": f"{label} deleted successfully", "deleted": deleted.to_record()}

    return router


def register_error_handlers(app: FastAPI) -> None:
    """Map store errors, request validation and anything else onto the error envelope."""

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        log = logger.warning if exc.kind is not ErrorKind.TRANSPORT else logger.error
        log(f"{request.method} {request.url.path} failed", kind=exc.kind.value, detail=exc.message)
        return JSONResponse(status_code=exc.kind.http_status, content={"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors()]
        logger.warning(f"Invalid request on {request.url.path}", errors=errors)
        return JSONResponse(
            status_code=ErrorKind.VALIDATION.http_status,
            content={"error": {"kind": ErrorKind.VALIDATION.value, "message": "Invalid request body", "errors": errors}},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.critical(f"Unhandled error on {request.url.path}", error=repr(exc))
        return JSONResponse(
            status_code=500,
            content={"error": {"kind": ErrorKind.TRANSPORT.value, "message": "Internal server error"}},
        )


def create_app(store: EntityStore, verifier: TokenVerifier) -> FastAPI:
    app = FastAPI(title="Job Tracker API", version=__version__)
    app.state.store = store
    app.state.verifier = verifier
    register_error_handlers(app)

    @app.get("/")
    def index():
        return {"message": "Job tracker API", "version": __version__}

    for entity_type in EntityType:
        app.include_router(_collection_router(entity_type), prefix=f"/api/{entity_type.value}")
    return app


def run_server(settings, host: str = "127.0.0.1") -> None:
    """Serve the API for the SQLite store configured in ``settings``."""
    if not settings.tokens:
        logger.warning("JOBTRACKER_TOKENS is empty; every request will be rejected as unauthorized")
    app = create_app(EntityStore.open(settings.db_path), StaticTokenVerifier(settings.tokens))
    logger.info(f"Server listening on port {settings.port}", db_path=str(settings.db_path))
    uvicorn.run(app, host=host, port=settings.port, log_level=settings.log_level.lower())
