import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
import perks
from config import settings
from database import collection_health, ensure_indexes, get_db
from errors import PerkError, PerkValidationError
from logging_config import setup_logging
from schemas import DeleteAck, PerkEnvelope, PerkListEnvelope, PerkPublic, format_error

setup_logging(settings.log_level, settings.log_file or None)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title=settings.project_name, version=settings.api_version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_request_user(request: Request, call_next):
    # The auth proxy in front of the service puts the caller's id in a header.
    user_id = (request.headers.get(settings.auth_user_header) or "").strip()
    request.state.user = {"id": user_id} if user_id else None
    return await call_next(request)


@app.exception_handler(PerkError)
async def perk_error_handler(request: Request, exc: PerkError):
    content: Dict[str, Any] = {"detail": exc.message}
    if isinstance(exc, PerkValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Malformed bodies and query values answer like any other invalid input.
    errors = [format_error(error) for error in exc.errors()]
    return await perk_error_handler(request, PerkValidationError(errors))


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def current_user(request: Request) -> Optional[Dict[str, Any]]:
    return getattr(request.state, "user", None)


@app.get("/")
def read_root():
    return {"message": "Perks API is running"}


@app.get("/health")
def health(db: Database = Depends(get_db)):
    """Document counts for the perk and user collections and whether the perk indexes exist."""
    try:
        report = collection_health(db)
    except PyMongoError:
        logger.exception("Health check failed")
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    report["status"] = "ok" if all(report["indexes"].values()) else "degraded"
    return report


# ------------------ Perk Endpoints ------------------

@app.get("/perks")
def list_perks(
    request: Request,
    title: Optional[str] = Query(None, description="Exact title to filter by"),
    db: Database = Depends(get_db),
    user: Optional[Dict[str, Any]] = Depends(current_user),
):
    """Filter by exact title when ``title`` is given, otherwise list the caller's perks."""
    if "title" in request.query_params:
        docs = perks.filter_perks_by_title(db, title)
        return [PerkPublic.model_validate(doc) for doc in docs]
    return PerkListEnvelope(perks=perks.list_owned_perks(db, user))


@app.get("/perks/public", response_model=PerkListEnvelope)
def list_public_perks(
    search: Optional[str] = Query(None, description="Case-insensitive title substring"),
    merchant: Optional[str] = Query(None, description="Exact merchant name"),
    limit: Optional[int] = Query(None, description="Maximum number of perks, capped at 500"),
    db: Database = Depends(get_db),
):
    return {"perks": perks.list_public_perks(db, search=search, merchant=merchant, limit=limit)}


@app.get("/perks/{perk_id}", response_model=PerkEnvelope)
def get_perk(perk_id: str, db: Database = Depends(get_db)):
    return {"perk": perks.get_perk(db, perk_id)}


@app.post("/perks", response_model=PerkEnvelope, status_code=201)
def create_perk(
    payload: Dict[str, Any] = Body(...),
    db: Database = Depends(get_db),
    user: Optional[Dict[str, Any]] = Depends(current_user),
):
    return {"perk": perks.create_perk(db, payload, user)}


@app.api_route("/perks/{perk_id}", methods=["PATCH", "PUT"], response_model=PerkEnvelope)
def update_perk(
    perk_id: str,
    payload: Dict[str, Any] = Body(...),
    db: Database = Depends(get_db),
    user: Optional[Dict[str, Any]] = Depends(current_user),
):
    perks.require_user_id(user)
    return {"perk": perks.update_perk(db, perk_id, payload)}


@app.delete("/perks/{perk_id}", response_model=DeleteAck)
def delete_perk(
    perk_id: str,
    db: Database = Depends(get_db),
    user: Optional[Dict[str, Any]] = Depends(current_user),
):
    perks.require_user_id(user)
    perks.delete_perk(db, perk_id)
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
