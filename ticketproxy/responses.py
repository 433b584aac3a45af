from __future__ import annotations

from typing import Any, Dict

from fastapi.responses import JSONResponse

PUBLIC_MAX_AGE = 300
SERVICES_MAX_AGE = 600


def envelope(data: Any = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    body.update(extra)
    return body


def cached(content: Dict[str, Any], max_age: int = PUBLIC_MAX_AGE) -> JSONResponse:
    return JSONResponse(content=content, headers={"Cache-Control": f"public, max-age={max_age}"})
