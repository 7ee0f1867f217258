# hirehub/api/deps.py
"""
Shared FastAPI dependencies: bearer authentication, access to the services
held on `app.state`, and the error envelope for HireHubError.
"""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from hirehub.core.errors import AuthorizationError, HireHubError, RateLimitError
from hirehub.core.security import Principal, decode_access_token

logger = logging.getLogger(__name__)

# auto_error=False so a missing header goes through our own 401 envelope
security = HTTPBearer(auto_error=False)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    token = credentials.credentials if credentials else None
    return decode_access_token(token)


QUEUE_ADMIN_ROLES = ("admin", "developer")


def require_roles(*roles: str):
    """Dependency factory: the caller's token role must be one of `roles`."""
    allowed = {r.lower() for r in roles}

    def _check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if (principal.role or "").lower() not in allowed:
            raise AuthorizationError(f"Requires one of the roles: {', '.join(sorted(allowed))}")
        return principal

    return _check


def get_services(request: Request):
    return request.app.state.services


def get_chat(request: Request):
    return request.app.state.services.chat


def get_realtime(request: Request):
    return request.app.state.services.realtime


def get_orchestrator(request: Request):
    return request.app.state.services.orchestrator


def get_dispatcher(request: Request):
    return request.app.state.services.dispatcher


def get_evaluation_store(request: Request):
    return request.app.state.services.evaluation_store


def get_monitor(request: Request):
    return request.app.state.services.monitor


async def hirehub_error_handler(request: Request, exc: HireHubError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.to_dict()["retry_after"])}
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HireHubError, hirehub_error_handler)
