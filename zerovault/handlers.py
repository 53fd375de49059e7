"""
aiohttp adapter for ZeroVault.

Routes:
    POST /upload?burn=&expiry=&decoy=&hash=   multipart field ``file``
    POST /upload-dual?burn=&expiry=           multipart fields ``file``, ``decoy``
    GET  /info/{file_id}
    GET  /files/{file_id}
    POST /heal-link/{file_id}                 JSON {"masterToken": ...}
    POST /disposable/{file_id}                JSON {"masterToken": ...}
    GET  /d/{token}

Every ``VaultError`` renders as ``{"error": code, "message": text}`` with
its status. Anything else becomes a generic 500 with no internal detail.
"""
import logging
from typing import Any

import orjson
from aiohttp import web

from .exceptions import FormatError, TooLarge, VaultError
from .vault import ZeroVault

logger = logging.getLogger("zerovault.handlers")

VAULT_KEY = web.AppKey("zerovault", ZeroVault)
_CHUNK_SIZE = 64 * 1024


def _dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode("utf-8")


def _json(data: Any, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_dumps)


def _flag(request: web.Request, name: str) -> bool:
    return request.query.get(name, "false").lower() == "true"


def _vault(request: web.Request) -> ZeroVault:
    return request.app[VAULT_KEY]


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except VaultError as err:
        return _json(err.to_dict(), status=err.status)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return _json(
            {"error": "internal_error", "message": "Internal server error"},
            status=500,
        )


async def _read_parts(request: web.Request, names: tuple[str, ...]) -> dict[str, bytes]:
    """Read the named multipart file fields, enforcing the upload size limit."""
    limit = _vault(request).config.max_upload_size
    if not request.content_type.startswith("multipart/"):
        raise FormatError("Expected multipart/form-data")
    reader = await request.multipart()
    parts: dict[str, bytes] = {}
    while True:
        field = await reader.next()
        if field is None:
            break
        if field.name not in names:
            continue
        buf = bytearray()
        while True:
            chunk = await field.read_chunk(_CHUNK_SIZE)
            if not chunk:
                break
            buf.extend(chunk)
            if len(buf) > limit:
                raise TooLarge()
        parts[field.name] = bytes(buf)
    missing = [n for n in names if n not in parts]
    if missing:
        raise FormatError("No file uploaded.")
    return parts


async def _master_token(request: web.Request) -> str:
    try:
        body = await request.json(loads=orjson.loads)
    except orjson.JSONDecodeError:
        raise FormatError("Request body must be JSON") from None
    token = body.get("masterToken") if isinstance(body, dict) else None
    if not isinstance(token, str) or not token:
        raise FormatError("masterToken is required")
    return token


async def _stream(request: web.Request, file_id: str) -> web.StreamResponse:
    """Send the envelope; a burn record is deleted once the body is written."""
    async with _vault(request).download(file_id) as data:
        resp = web.StreamResponse(headers={
            "Content-Type": "application/octet-stream",
            "Content-Disposition": f'attachment; filename="{file_id}"',
            "Cache-Control": "no-store",
        })
        resp.content_length = len(data)
        await resp.prepare(request)
        for start in range(0, len(data), _CHUNK_SIZE):
            await resp.write(data[start:start + _CHUNK_SIZE])
        await resp.write_eof()
    return resp


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def upload(request: web.Request) -> web.Response:
    parts = await _read_parts(request, ("file",))
    result = await _vault(request).upload(
        parts["file"],
        burn=_flag(request, "burn"),
        expiry=request.query.get("expiry"),
        decoy=_flag(request, "decoy"),
        file_hash=request.query.get("hash"),
    )
    return _json(result.to_dict())


async def upload_dual(request: web.Request) -> web.Response:
    parts = await _read_parts(request, ("file", "decoy"))
    result = await _vault(request).upload_dual(
        parts["file"],
        parts["decoy"],
        burn=_flag(request, "burn"),
        expiry=request.query.get("expiry"),
    )
    return _json(result.to_dict())


async def info(request: web.Request) -> web.Response:
    return _json(await _vault(request).info(request.match_info["file_id"]))


async def download(request: web.Request) -> web.StreamResponse:
    return await _stream(request, request.match_info["file_id"])


async def heal_link(request: web.Request) -> web.Response:
    token = await _master_token(request)
    result = await _vault(request).heal(request.match_info["file_id"], token)
    return _json(result.to_dict())


async def issue_disposable(request: web.Request) -> web.Response:
    token = await _master_token(request)
    grant = await _vault(request).issue_disposable(request.match_info["file_id"], token)
    return _json(grant.to_dict())


async def redeem_disposable(request: web.Request) -> web.StreamResponse:
    record = await _vault(request).tokens.redeem_disposable_token(
        request.match_info["token"]
    )
    return await _stream(request, record.file_id)


# ---------------------------------------------------------------------------
# Application wiring
# ---------------------------------------------------------------------------

def setup(app: web.Application, vault: ZeroVault, sweep: bool = True) -> web.Application:
    """Register ZeroVault routes, error middleware and lifecycle hooks."""
    app[VAULT_KEY] = vault
    app.middlewares.append(error_middleware)
    app.router.add_post("/upload", upload)
    app.router.add_post("/upload-dual", upload_dual)
    app.router.add_get("/info/{file_id}", info)
    app.router.add_get("/files/{file_id}", download)
    app.router.add_post("/heal-link/{file_id}", heal_link)
    app.router.add_post("/disposable/{file_id}", issue_disposable)
    app.router.add_get("/d/{token}", redeem_disposable)

    async def _on_startup(app: web.Application) -> None:
        await vault.start(sweep=sweep)

    async def _on_cleanup(app: web.Application) -> None:
        await vault.close()

    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app


def create_app(vault: ZeroVault | None = None, sweep: bool = True) -> web.Application:
    vault = vault or ZeroVault()
    # multipart bodies are size-checked chunk by chunk in _read_parts
    app = web.Application(client_max_size=vault.config.max_upload_size * 2 + 1024 * 1024)
    return setup(app, vault, sweep=sweep)
