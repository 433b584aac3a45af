"""
Stand-in for the ticketing API, for local runs, load tests and the proxy
integration tests.

    uvicorn fake_backend.fake_upstream:app --port 8099
    API_BASE_URL=http://127.0.0.1:8099 uvicorn ticketproxy.app:app
"""
import asyncio
from collections import defaultdict

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

app = FastAPI()

# per-key call counters for the flaky endpoints
_calls = defaultdict(int)

EVENTS = [
    {"event_id": f"evt_{i}", "sport_type": "soccer", "tournament_id": "trn_1", "event_name": f"Match {i}"}
    for i in range(1, 6)
]


def reset():
    _calls.clear()


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/v1/events")
def events(request: Request):
    page_size = int(request.query_params.get("page_size", len(EVENTS)))
    return {"events": EVENTS[:page_size], "pagination": {"total_size": len(EVENTS)}}


@app.get("/v1/events/{event_id}")
def event(event_id: str):
    for e in EVENTS:
        if e["event_id"] == event_id:
            return e
    return JSONResponse(status_code=404, content={"error": "not_found", "message": f"Event {event_id} not found"})


@app.get("/v1/flaky/{key}")
def flaky(key: str, fail: int = 1, status: int = 503):
    """Fails `fail` times per key with `status`, then succeeds."""
    _calls[key] += 1
    if _calls[key] <= fail:
        return JSONResponse(status_code=status, content={"error": "unavailable", "attempt": _calls[key]})
    return {"ok": True, "attempts": _calls[key]}


@app.get("/v1/rate-limited/{key}")
def rate_limited(key: str, fail: int = 1, retry_after: str = "1"):
    _calls[key] += 1
    if _calls[key] <= fail:
        headers = {"Retry-After": retry_after} if retry_after else {}
        return JSONResponse(status_code=429, content={"error": "rate_limited"}, headers=headers)
    return {"ok": True, "attempts": _calls[key]}


@app.get("/v1/slow")
async def slow(delay: float = 2.0):
    await asyncio.sleep(delay)
    return {"ok": True, "delay": delay}


@app.get("/v1/big")
def big(size: int = 2 * 1024 * 1024):
    # raw bytes so Content-Length is exact
    return Response(content=b"x" * size, media_type="application/octet-stream")


@app.api_route("/v1/echo/{rest:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
async def echo(rest: str, request: Request):
    body = await request.body()
    return {
        "method": request.method,
        "path": request.url.path,
        "query": request.url.query,
        "headers": dict(request.headers),
        "body": body.decode("utf-8", errors="replace"),
    }


@app.get("/v1/error")
def error():
    return JSONResponse(status_code=500, content={"error": "internal", "message": "upstream exploded", "code": 5001})
