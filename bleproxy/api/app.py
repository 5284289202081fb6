import json
import logging

import msgpack
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from msgpack.exceptions import UnpackException
from starlette.exceptions import HTTPException as StarletteHTTPException

from bleproxy.core.constants import __version__
from bleproxy.core.errors import BodyDecodeError, EnvelopeMalformed
from bleproxy.core.utils import iso_timestamp, utc_now


def _hex_frames(decoded):
    # JSON has no byte type; frames arrive as hex strings
    devices = decoded.get("devices") if isinstance(decoded, dict) else None
    if not isinstance(devices, list):
        return decoded
    frames = []
    for item in devices:
        if isinstance(item, str):
            try:
                item = bytes.fromhex(item)
            except ValueError:
                pass
        frames.append(item)
    decoded["devices"] = frames
    return decoded


def decode_body(body: bytes, content_type: str = ""):
    """Decode a gateway report body. MessagePack unless the client says JSON."""
    if not body:
        raise BodyDecodeError("Request body is required")
    if "application/json" in (content_type or ""):
        try:
            return _hex_frames(json.loads(body.decode("utf-8")))
        except ValueError as e:
            raise BodyDecodeError(f"Invalid JSON format: {e}") from e
    try:
        return msgpack.unpackb(body, raw=False)
    except (UnpackException, ValueError, TypeError) as e:
        raise BodyDecodeError(f"Invalid MessagePack format: {e}") from e


def create_app(bridge) -> FastAPI:
    app = FastAPI(title="bleproxy", version=__version__)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            logging.warning(f"[api] 404 - endpoint not found: {request.method} {request.url.path}")
            return JSONResponse(status_code=404, content={"error": "Endpoint not found"})
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.post("/tokendata")
    async def tokendata(request: Request):
        body = await request.body()
        client = request.client.host if request.client else "?"
        logging.debug(f"[api] POST /tokendata from {client}: {len(body)} bytes")
        try:
            decoded = decode_body(body, request.headers.get("content-type", ""))
        except BodyDecodeError as e:
            logging.warning(f"[api] rejected report from {client}: {e}")
            return JSONResponse(status_code=400, content={"error": str(e)})

        try:
            # the scheduler lock is blocking; keep it off the event loop
            result = await run_in_threadpool(bridge.handle_envelope, decoded)
        except EnvelopeMalformed as e:
            logging.warning(f"[api] invalid gateway data from {client}: {e}")
            return JSONResponse(status_code=400, content={"error": "Invalid gateway data", "details": str(e)})
        except Exception as e:
            logging.error(f"[api] request processing failed: {e}", exc_info=True)
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

        if result.all_failed:
            logging.error(f"[api] all {result.total_frames} device frames failed to parse")
            return JSONResponse(status_code=400, content={
                "error": "Failed to parse any device data",
                "details": [e.error for e in result.errors],
            })
        return Response(status_code=204)

    @app.get("/health")
    def health():
        return {"status": "ok", "timestamp": iso_timestamp(utc_now()), "version": __version__}

    @app.get("/status")
    def status():
        return bridge.status()

    return app
