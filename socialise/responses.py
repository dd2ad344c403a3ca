"""
Socialise API Response Utilities
Response envelopes and the mapping from domain errors to HTTP errors
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from .errors import ConcurrentModificationError, InvalidPostStateError, PostNotFoundError, QueueUnavailableError
from .logging_config import api_logger


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ============================================================
# ENVELOPES
# ============================================================

def success(data: Any = None, message: str = None) -> Dict:
    """``{ok: true, data, message?}``"""
    response = {"ok": True, "timestamp": _timestamp()}
    if data is not None:
        response["data"] = data
    if message:
        response["message"] = message
    return response


def paginated(items: List, total: int, limit: int = 20, offset: int = 0) -> Dict:
    """Offset-paginated list; ``has_next`` tells the client to fetch ``offset + limit``"""
    return {
        "ok": True,
        "data": items,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_next": offset + limit < total,
        },
        "timestamp": _timestamp(),
    }


# ============================================================
# ERRORS
# ============================================================

class ApiException(HTTPException):
    """HTTP error carrying a machine-readable ``error_code``"""

    def __init__(self, status_code: int, message: str, error_code: str = None, details: Dict = None):
        self.error_code = error_code or f"ERR_{status_code}"
        self.details = details
        super().__init__(status_code=status_code, detail=message)


def not_found(resource: str = "Resource", id: str = None):
    message = f"{resource} not found" if not id else f"{resource} '{id}' not found"
    raise ApiException(404, message, "NOT_FOUND")


def validation_error(message: str, details: Dict = None):
    raise ApiException(422, message, "VALIDATION_ERROR", details)


# Checked in order; subclasses must come before their bases
QUEUE_ERROR_STATUS = (
    (PostNotFoundError, 404, "POST_NOT_FOUND"),
    (ConcurrentModificationError, 409, "CONCURRENT_MODIFICATION"),
    (InvalidPostStateError, 409, "INVALID_POST_STATE"),
    (QueueUnavailableError, 503, "QUEUE_UNAVAILABLE"),
    (ValueError, 422, "VALIDATION_ERROR"),
)


@contextmanager
def queue_errors():
    """Re-raise store and queue errors as ApiException"""
    try:
        yield
    except tuple(cls for cls, _, _ in QUEUE_ERROR_STATUS) as e:
        for cls, status_code, code in QUEUE_ERROR_STATUS:
            if isinstance(e, cls):
                raise ApiException(status_code, str(e), code) from e
        raise


async def api_exception_handler(request: Request, exc: ApiException) -> JSONResponse:
    log = api_logger.error if exc.status_code >= 500 else api_logger.warning
    log(
        f"API Error: {exc.detail}",
        status_code=exc.status_code,
        error_code=exc.error_code,
        path=request.url.path,
        workspace_id=request.headers.get("x-workspace-id"),
    )
    content = {
        "ok": False,
        "error": exc.detail,
        "error_code": exc.error_code,
        "timestamp": _timestamp(),
    }
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


# ============================================================
# VALIDATION HELPERS
# ============================================================

def require(value: Any, field_name: str):
    """Require a field to be present"""
    if value is None or (isinstance(value, str) and not value.strip()):
        validation_error(f"{field_name} is required", {"field": field_name})
    return value


def require_workspace(workspace_id: Optional[str]) -> str:
    return require(workspace_id, "X-Workspace-Id")
