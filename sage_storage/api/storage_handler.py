"""
Storage access gateway.

Serves files addressed as {job}/{task}/{node}/{timestamp}-{filename}:
 - HEAD returns backend metadata and never checks authorization
 - GET enforces the authorization policy and then streams the object or
   redirects to a pre-signed URL, depending on the configured serve mode
 - OPTIONS is accepted with an empty body

Backend failures are translated into NotFound (404) or BackendError (500).
"""
import base64
import binascii
import json
import logging
from typing import Any, Callable, Optional
from urllib.parse import quote

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, RedirectResponse, Response, StreamingResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from fastapi.security.utils import get_authorization_scheme_param
from starlette.concurrency import run_in_threadpool

from ..error_handling import BackendError, NotFound, RequestError, Unauthorized
from ..identity import parse_file_path, storage_key
from ..metrics.metrics import BACKEND_LATENCY, FILE_DOWNLOAD_BYTES
from ..policy.policy_engine import PolicyEngine
from ..storage.abstract import BackendErrorKind, ObjectBody, ObjectStore, StorageBackendError

logger = logging.getLogger("sage_storage.gateway")

router = APIRouter()


class OptionalHTTPBasic(HTTPBasic):
    """
    HTTP Basic credentials that never fail the request.

    A missing, non-Basic or undecodable Authorization header yields None, so
    public files stay reachable whatever the client sends. The payload is
    decoded as UTF-8 so non-ASCII passwords can match.
    """
    async def __call__(self, request: Request) -> Optional[HTTPBasicCredentials]:
        authorization = request.headers.get("Authorization")
        scheme, param = get_authorization_scheme_param(authorization)
        if not authorization or scheme.lower() != "basic":
            return None
        try:
            decoded = base64.b64decode(param, validate=True).decode("utf-8")
        except (binascii.Error, ValueError):
            return None
        username, sep, password = decoded.partition(":")
        if not sep:
            return None
        return HTTPBasicCredentials(username=username, password=password)


basic_auth = OptionalHTTPBasic(auto_error=False)


class PrettyJSONResponse(JSONResponse):
    def render(self, content: Any) -> bytes:
        return json.dumps(content, ensure_ascii=False, indent=2).encode("utf-8")


def error_response(status_code: int, message: str, headers: Optional[dict] = None) -> PrettyJSONResponse:
    return PrettyJSONResponse({"error": message}, status_code=status_code, headers=headers)


def content_disposition(filename: str) -> str:
    try:
        filename.encode("latin-1")
    except UnicodeEncodeError:
        return f"attachment; filename*=UTF-8''{quote(filename, safe='')}"
    return f"attachment; filename={filename}"


def translate_backend_error(exc: StorageBackendError, operation: str) -> RequestError:
    if exc.kind is BackendErrorKind.NO_SUCH_BUCKET:
        return NotFound(f"Bucket not found: {exc.message}")
    if exc.kind is BackendErrorKind.NO_SUCH_KEY:
        return NotFound(f"File not found: {exc.message}")
    return BackendError(f"Error getting data, {operation} returned: {exc.message}")


class StorageGateway:
    def __init__(
        self,
        store: ObjectStore,
        engine: PolicyEngine,
        root_folder: str = "",
        serve_mode: str = "stream",
        presign_ttl: int = 60,
        chunk_size: int = 64 * 1024,
        realm: Optional[str] = None,
    ):
        if serve_mode not in ("stream", "redirect"):
            raise ValueError(f"unsupported serve mode {serve_mode!r}")
        self.store = store
        self.engine = engine
        self.root_folder = root_folder
        self.serve_mode = serve_mode
        self.presign_ttl = presign_ttl
        self.chunk_size = chunk_size
        self.realm = realm

    async def _backend_call(self, operation: str, fn: Callable, *args, **kwargs):
        with BACKEND_LATENCY.labels(operation=operation).time():
            try:
                return await run_in_threadpool(fn, *args, **kwargs)
            except StorageBackendError as e:
                level = logging.INFO if e.kind is not BackendErrorKind.OTHER else logging.WARNING
                logger.log(level, "%s failed for s3://%s: %s", operation, getattr(self.store, "bucket", "?"), e.message)
                raise translate_backend_error(e, operation) from e

    async def head(self, file_path: str) -> Response:
        identity = parse_file_path(file_path)
        key = storage_key(identity, self.root_folder)

        meta = await self._backend_call("HeadObject", self.store.head_object, key)

        headers = {"Content-Disposition": content_disposition(identity.filename)}
        if meta.content_length is not None:
            headers["Content-Length"] = str(meta.content_length)
        response = PrettyJSONResponse(jsonable_encoder(meta.raw), status_code=200, headers=headers)
        if meta.content_length is None:
            # the rendered JSON length is not the object size
            del response.headers["content-length"]
        return response

    async def get(self, file_path: str, credentials: Optional[HTTPBasicCredentials]) -> Response:
        identity = parse_file_path(file_path)

        if credentials is not None:
            username, password, has_credentials = credentials.username, credentials.password, True
        else:
            username, password, has_credentials = "", "", False

        granted, decision = self.engine.check(identity, username, password, has_credentials)
        if not granted:
            logger.info(
                "denied %s: %s (rule version %d, credentials supplied: %s)",
                file_path, decision.reason, decision.rule_version, has_credentials,
            )
            raise Unauthorized("not authorized", realm=self.realm)

        key = storage_key(identity, self.root_folder)
        disposition = content_disposition(identity.filename)

        if self.serve_mode == "redirect":
            url = await self._backend_call(
                "PresignGetObject", self.store.presign_get, key, self.presign_ttl, disposition
            )
            return RedirectResponse(url, status_code=307, headers={"Content-Disposition": disposition})

        obj = await self._backend_call("GetObject", self.store.get_object, key)
        headers = {"Content-Disposition": disposition}
        if obj.metadata.content_length is not None:
            headers["Content-Length"] = str(obj.metadata.content_length)
        return StreamingResponse(
            self._stream_body(obj.body, file_path),
            status_code=200,
            media_type=obj.metadata.content_type or "application/octet-stream",
            headers=headers,
        )

    async def _stream_body(self, body: ObjectBody, file_path: str):
        written = 0
        try:
            while True:
                chunk = await run_in_threadpool(body.read, self.chunk_size)
                if not chunk:
                    break
                written += len(chunk)
                yield chunk
        except Exception:
            logger.exception("error streaming %s after %d bytes", file_path, written)
            raise
        finally:
            FILE_DOWNLOAD_BYTES.inc(written)
            body.close()


@router.api_route("/{file_path:path}", methods=["GET", "HEAD", "OPTIONS"], include_in_schema=False)
async def storage_handler(request: Request, file_path: str) -> Response:
    gateway: StorageGateway = request.app.state.gateway
    logger.info("storage handler: %s %s", request.method, request.url)

    if request.method == "OPTIONS":
        # TODO: answer CORS preflight with Allow-Methods/Allow-Headers once clients need it
        return Response(status_code=200)
    if request.method == "HEAD":
        return await gateway.head(file_path)
    # credentials only matter for GET
    credentials = await basic_auth(request)
    return await gateway.get(file_path, credentials)
