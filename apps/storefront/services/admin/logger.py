"""
Access log for the storefront loyalty API.

One structured entry per request. Credentials never reach the log: Supabase
keys travel in `apikey` / `authorization`, storefront sessions in cookies.
"""

import logging
import time
from typing import Any, Dict, Mapping

from fastapi import Request, Response

log = logging.getLogger("storefront.admin")

SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "apikey",
        "x-api-key",
        "x-supabase-key",
    }
)
MASK = "***masked***"

# probed every few seconds by the platform
QUIET_PATHS = ("/health",)


def mask_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k: (MASK if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()}


def access_entry(request: Request, status_code: int, start_time: float) -> Dict[str, Any]:
    return {
        "method": request.method,
        "path": request.url.path,
        "query": request.url.query or None,
        "status_code": status_code,
        "duration_ms": int((time.perf_counter() - start_time) * 1000),
        "client": request.client.host if request.client else None,
        "headers": mask_headers(request.headers),
    }


async def log_request_response(request: Request, response: Response, start_time: float) -> Dict[str, Any]:
    entry = access_entry(request, response.status_code, start_time)

    if response.status_code >= 500:
        log.error(entry)
    elif response.status_code >= 400:
        log.warning(entry)
    elif request.url.path.startswith(QUIET_PATHS):
        log.debug(entry)
    else:
        log.info(entry)
    return entry
