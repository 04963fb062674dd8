from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# money goes out as exact strings, never floats
_ENCODERS = {Decimal: str}


def _encode(value: Any) -> Any:
    return jsonable_encoder(value, custom_encoder=_ENCODERS)


def ok(data: Any = None, meta: Optional[Dict[str, Any]] = None, status: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "ok": True,
            "data": _encode(data),
            "meta": _encode(meta or {}),
        },
    )


def error(message: str, code: str = "error", status: int = 400, details: Any = None) -> JSONResponse:
    content: Dict[str, Any] = {
        "ok": False,
        "error": code,
        "message": message,
    }
    if details is not None:
        content["details"] = _encode(details)
    return JSONResponse(status_code=status, content=content)
