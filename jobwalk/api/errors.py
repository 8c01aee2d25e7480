import json

from fastapi import HTTPException

from jobwalk.core.errors import (
    InvalidTransition,
    JobwalkError,
    NotFound,
    UpstreamFailure,
    UpstreamTimeout,
    ValidationFailure,
)


def to_http(e: JobwalkError) -> HTTPException:
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidTransition):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValidationFailure):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, UpstreamTimeout):
        return HTTPException(status_code=504, detail=str(e))
    if isinstance(e, UpstreamFailure):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def safe_json_loads(s: str | None):
    if not s:
        return None
    try:
        return json.loads(s)
    except ValueError:
        return None
