"""Request identity and error mapping for the HTTP API."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from labelhub.artists import artist_for_user
from labelhub.auth import USER_ROLES, Actor
from labelhub.errors import AppError, Unauthorized, ValidationError
from labelhub.storage.db import get_session

logger = logging.getLogger(__name__)


async def current_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Build the acting user from the identity provider's trusted headers."""
    if not x_user_id or not x_user_role:
        raise Unauthorized("Missing identity headers")
    try:
        user_id = UUID(x_user_id)
    except ValueError as e:
        raise Unauthorized("Malformed X-User-Id header") from e
    role = x_user_role.strip().lower()
    if role not in USER_ROLES:
        raise Unauthorized(f"Unknown role: {x_user_role}")

    artist_id = None
    if role == "artist":
        async with get_session() as session:
            artist = await artist_for_user(session, user_id)
            artist_id = artist.id if artist else None
    return Actor(user_id=user_id, role=role, artist_id=artist_id)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.debug("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = {".".join(str(p) for p in err["loc"]): err["msg"] for err in exc.errors()}
    error = ValidationError("Invalid request", reason="invalid_fields", details={"fields": fields})
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
