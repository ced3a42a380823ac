"""JSON response envelopes shared by the REST routers.

Every REST response has the shape ``{success, message, data}``; errors omit
``data``.
"""
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(status_code: int, data: Optional[dict], message: str) -> JSONResponse:
    return JSONResponse(
        {"success": True, "message": message, "data": jsonable_encoder(data or {})},
        status_code=status_code,
    )


def error_response(status_code: int, message: Any) -> JSONResponse:
    return JSONResponse(
        {"success": False, "message": str(message)},
        status_code=status_code,
    )
