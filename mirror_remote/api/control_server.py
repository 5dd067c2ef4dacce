"""HTTP control surface proxying requests into the asyncio runtime."""

from __future__ import annotations

import asyncio
import contextlib
import hmac
import json
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import TimeoutError as FutureTimeoutError
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from loguru import logger

from mirror_remote.api.actions import ActionDispatcher, ActionRequest, unknown_command_reply
from mirror_remote.config.store import ConfigStore
from mirror_remote.extensions.catalog import ExtensionCatalog
from mirror_remote.runtime.core import RemoteRuntimeCore
from mirror_remote.web.template import TemplateRenderer

HelpResolver = Callable[[str], Awaitable[str | None]]


def json_response(payload: Any) -> bytes:
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def _first_query_value(params: dict[str, list[str]], *keys: str) -> str | None:
    for key in keys:
        values = params.get(key, [])
        if values:
            return str(values[0])
    return None


def _snapshot_field(snapshot: Any, key: str, default: Any = None) -> Any:
    if isinstance(snapshot, dict):
        return snapshot.get(key, default)
    return default


class _RemoteRequestHandler(BaseHTTPRequestHandler):
    """Synchronous HTTP handler that proxies into asyncio runtime."""

    runtime: RemoteRuntimeCore | None = None
    dispatcher: ActionDispatcher | None = None
    store: ConfigStore | None = None
    catalog: ExtensionCatalog | None = None
    renderer: TemplateRenderer | None = None
    help_resolver: HelpResolver | None = None
    loop: asyncio.AbstractEventLoop | None = None
    auth_enabled: bool = False
    auth_token: str = ""
    max_request_body_bytes: int = 2 * 1024 * 1024
    wait_timeout_s: float = 5.0

    server_version = "mirror-remote/0.1"

    def do_GET(self) -> None:  # noqa: N802
        if not self._ensure_authorized():
            return
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query or "")
        if parsed.path == "/remote.html":
            self._get_ui_page()
            return
        if parsed.path == "/get":
            self._answer_get(params)
            return
        if parsed.path == "/config-help.html":
            self._answer_config_help(params)
            return
        if parsed.path == "/remote":
            self._answer_remote(params)
            return
        if parsed.path == "/status":
            self._send_json(HTTPStatus.OK, self.runtime.get_runtime_status() if self.runtime else {})
            return
        self._send_json(HTTPStatus.NOT_FOUND, {"status": "error", "reason": "not_found"})

    def do_POST(self) -> None:  # noqa: N802
        if not self._ensure_authorized():
            return
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query or "")
        if parsed.path == "/post":
            self._answer_post(params)
            return
        self._send_json(HTTPStatus.NOT_FOUND, {"status": "error", "reason": "not_found"})

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.debug("control-api " + fmt % args)

    @staticmethod
    def _is_authorized_request(
        headers: Any,
        *,
        enabled: bool,
        token: str,
    ) -> bool:
        if not enabled:
            return True
        expected = (token or "").strip()
        if not expected:
            return False
        raw_auth = str(headers.get("Authorization", "")).strip()
        if raw_auth.lower().startswith("bearer "):
            candidate = raw_auth[7:].strip()
        else:
            candidate = str(headers.get("X-Auth-Token", "")).strip()
        if not candidate:
            return False
        return hmac.compare_digest(candidate, expected)

    def _ensure_authorized(self) -> bool:
        if self._is_authorized_request(
            self.headers,
            enabled=self.auth_enabled,
            token=self.auth_token,
        ):
            return True
        self._send_json(HTTPStatus.UNAUTHORIZED, {"status": "error", "reason": "unauthorized"})
        return False

    def _read_json_body(self) -> Any | None:
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            length = 0
        max_body = max(1024, int(self.max_request_body_bytes))
        if length > max_body:
            self._send_json(
                HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
                {
                    "status": "error",
                    "reason": "body_too_large",
                    "info": f"request body too large (max {max_body} bytes)",
                },
            )
            return None
        body = self.rfile.read(length) if length > 0 else b"{}"
        try:
            return json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._send_json(HTTPStatus.BAD_REQUEST, {"status": "error", "reason": "invalid_json"})
            return None

    @staticmethod
    def _resolve_future_result(
        future: Any,
        *,
        timeout: float,
    ) -> tuple[bool, Any | None, HTTPStatus, str | None]:
        """Resolve a thread-safe asyncio future into (ok, result, http_status, error)."""
        try:
            return True, future.result(timeout=timeout), HTTPStatus.OK, None
        except FutureTimeoutError:
            with contextlib.suppress(Exception):
                future.cancel()
            return False, None, HTTPStatus.GATEWAY_TIMEOUT, "runtime_timeout"
        except Exception as e:
            logger.warning(f"control-api future failed: {e}")
            return False, None, HTTPStatus.INTERNAL_SERVER_ERROR, "runtime_error"

    def _run_on_loop(self, coro: Any, *, timeout: float) -> tuple[bool, Any | None]:
        """Run coro on the runtime loop; on failure the error reply is already sent."""
        if not self.loop:
            coro.close()
            self._send_json(HTTPStatus.SERVICE_UNAVAILABLE, {"status": "error", "reason": "runtime_unavailable"})
            return False, None
        fut = asyncio.run_coroutine_threadsafe(coro, self.loop)
        ok, result, err_code, err_msg = self._resolve_future_result(fut, timeout=timeout)
        if not ok:
            self._send_json(err_code, {"status": "error", "reason": err_msg})
            return False, None
        return True, result

    def _wait_for_snapshot(self) -> tuple[bool, Any | None]:
        if not self.runtime:
            self._send_json(HTTPStatus.SERVICE_UNAVAILABLE, {"status": "error", "reason": "runtime_unavailable"})
            return False, None
        return self._run_on_loop(self.runtime.wait_for_fresh_state(), timeout=self.wait_timeout_s)

    def _get_ui_page(self) -> None:
        if not self.renderer or not self.renderer.loaded:
            self.send_error(HTTPStatus.SERVICE_UNAVAILABLE)
            return
        ok, snapshot = self._wait_for_snapshot()
        if not ok:
            return
        page = self.renderer.render(_snapshot_field(snapshot, "brightness", 100))
        self._send_body(HTTPStatus.OK, page.encode("utf-8"), "text/html; charset=utf-8")

    def _answer_get(self, params: dict[str, list[str]]) -> None:
        data = _first_query_value(params, "data")
        if data == "modulesAvailable":
            self._send_json(HTTPStatus.OK, self.catalog.sorted_available() if self.catalog else [])
            return
        if data == "translations":
            self._send_json(HTTPStatus.OK, self.renderer.translation if self.renderer else {})
            return
        if data == "config":
            if not self.store:
                self._send_json(HTTPStatus.SERVICE_UNAVAILABLE, {"status": "error", "reason": "config_unavailable"})
                return
            defaults = self.catalog.config_defaults if self.catalog else {}
            self._send_json(HTTPStatus.OK, self.store.get_config(defaults).to_dict())
            return
        if data == "defaultConfig":
            module = _first_query_value(params, "module") or ""
            self._send_json(HTTPStatus.OK, self.catalog.defaults_for(module) if self.catalog else None)
            return
        if data in {"modules", "brightness"}:
            ok, snapshot = self._wait_for_snapshot()
            if not ok:
                return
            key = "moduleData" if data == "modules" else "brightness"
            self._send_json(HTTPStatus.OK, _snapshot_field(snapshot, key))
            return
        raw = {key: values[0] for key, values in params.items() if values}
        self._send_json(
            HTTPStatus.BAD_REQUEST,
            unknown_command_reply(json.dumps(raw, separators=(",", ":"), ensure_ascii=False)),
        )

    def _answer_post(self, params: dict[str, list[str]]) -> None:
        data = _first_query_value(params, "data")
        if data != "config":
            raw = {key: values[0] for key, values in params.items() if values}
            self._send_json(
                HTTPStatus.BAD_REQUEST,
                unknown_command_reply(json.dumps(raw, separators=(",", ":"), ensure_ascii=False)),
            )
            return
        if not self.store:
            self._send_json(HTTPStatus.SERVICE_UNAVAILABLE, {"status": "error", "reason": "config_unavailable"})
            return
        payload = self._read_json_body()
        if payload is None:
            return
        if not isinstance(payload, dict):
            self._send_json(
                HTTPStatus.BAD_REQUEST,
                {"status": "error", "reason": "invalid_config", "info": "config must be an object"},
            )
            return
        ok, result = self._run_on_loop(self.store.rotate_and_save(payload), timeout=30)
        if not ok:
            return
        if result.ok:
            self._send_json(HTTPStatus.OK, {"status": "success"})
            return
        status = HTTPStatus.BAD_REQUEST if result.reason == "invalid_config" else HTTPStatus.INTERNAL_SERVER_ERROR
        self._send_json(status, {"status": "error", "reason": result.reason, "info": result.error})

    def _answer_config_help(self, params: dict[str, list[str]]) -> None:
        module = _first_query_value(params, "module") or ""
        if not self.help_resolver or not module:
            self._send_json(HTTPStatus.NOT_FOUND, {"status": "error", "reason": "unknown_module"})
            return
        ok, location = self._run_on_loop(self.help_resolver(module), timeout=30)
        if not ok:
            return
        if not location:
            self._send_json(HTTPStatus.NOT_FOUND, {"status": "error", "reason": "unknown_module"})
            return
        self.send_response(HTTPStatus.FOUND)
        self.send_header("Location", location)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _answer_remote(self, params: dict[str, list[str]]) -> None:
        request = ActionRequest.from_query(params)
        action = ActionDispatcher.resolve(request.action)
        if action is None or not self.dispatcher:
            self._send_json(HTTPStatus.BAD_REQUEST, unknown_command_reply(request.original_input()))
            return
        ok, reply = self._run_on_loop(
            self.dispatcher.dispatch(request),
            timeout=self.dispatcher.reply_timeout(action),
        )
        if not ok:
            return
        if reply is None:
            self._send_json(HTTPStatus.BAD_REQUEST, unknown_command_reply(request.original_input()))
            return
        self._send_json(reply.status, reply.body)

    def _send_json(self, code: HTTPStatus, payload: Any) -> None:
        self._send_body(code, json_response(payload), "application/json; charset=utf-8")

    def _send_body(self, code: HTTPStatus, body: bytes, content_type: str) -> None:
        self.send_response(code)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class RemoteControlServer:
    """Threaded HTTP endpoint for the remote-control web UI and API."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        runtime: RemoteRuntimeCore,
        dispatcher: ActionDispatcher,
        store: ConfigStore,
        loop: asyncio.AbstractEventLoop,
        catalog: ExtensionCatalog | None = None,
        renderer: TemplateRenderer | None = None,
        help_resolver: HelpResolver | None = None,
        max_request_body_bytes: int = 2 * 1024 * 1024,
        wait_timeout_s: float = 5.0,
        auth_enabled: bool = False,
        auth_token: str = "",
    ) -> None:
        self.host = host
        self.port = port
        self.runtime = runtime
        self.dispatcher = dispatcher
        self.store = store
        self.loop = loop
        self.catalog = catalog
        self.renderer = renderer
        self.help_resolver = help_resolver
        self.max_request_body_bytes = max(1024, int(max_request_body_bytes))
        self.wait_timeout_s = max(0.5, float(wait_timeout_s))
        self.auth_enabled = auth_enabled
        self.auth_token = auth_token
        self._thread: threading.Thread | None = None
        self._server: ThreadingHTTPServer | None = None

    def start(self) -> None:
        handler_cls = type("BoundRemoteRequestHandler", (_RemoteRequestHandler,), {})
        handler_cls.runtime = self.runtime
        handler_cls.dispatcher = self.dispatcher
        handler_cls.store = self.store
        handler_cls.catalog = self.catalog
        handler_cls.renderer = self.renderer
        handler_cls.help_resolver = staticmethod(self.help_resolver) if self.help_resolver else None
        handler_cls.loop = self.loop
        handler_cls.auth_enabled = self.auth_enabled
        handler_cls.auth_token = self.auth_token
        handler_cls.max_request_body_bytes = self.max_request_body_bytes
        handler_cls.wait_timeout_s = self.wait_timeout_s
        self._server = ThreadingHTTPServer((self.host, self.port), handler_cls)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info(f"Remote control API listening on http://{self.host}:{self.port}")

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
        self._thread = None
