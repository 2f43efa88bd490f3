from datetime import datetime
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse

from mockoauth.utils import to_iso, utcnow


class JsonResponse(JSONResponse):
    def __init__(self, *args, **kwargs):
        super().__init__(
            *args,
            **kwargs,
        )
        self.headers["Server"] = "Mock Classroom API"


def get_correlation_id(request: Request) -> str:
    """
    Echo the ``correlationid`` request header, or mint one id per request
    """
    correlation_id = getattr(request.state, "correlation_id", None)
    if correlation_id is None:
        correlation_id = request.headers.get("correlationid") or str(uuid4())
        request.state.correlation_id = correlation_id
    return correlation_id


def ok(request: Request, data: Any = None, now: datetime | None = None) -> dict[str, Any]:
    content = {
        "status": "success",
        "correlationId": get_correlation_id(request),
        "timestamp": to_iso(now or utcnow()),
    }
    if data is not None:
        content["data"] = data
    return content


def err(request: Request, code: int, message: str, now: datetime | None = None) -> dict[str, Any]:
    return {
        "status": "error",
        "correlationId": get_correlation_id(request),
        "timestamp": to_iso(now or utcnow()),
        "error": {"code": code, "message": message},
    }
