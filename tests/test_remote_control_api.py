import asyncio
import http.client
import json
import os
import socket
import threading
import time
from pathlib import Path
from urllib import request
from urllib.error import HTTPError

from mirror_remote.api.actions import ActionDispatcher
from mirror_remote.api.control_server import RemoteControlServer
from mirror_remote.channel.mock_channel import MockChannel
from mirror_remote.channel.protocol import Notification
from mirror_remote.config.store import ConfigStore, parse_config_text, serialize_config
from mirror_remote.runtime.core import RemoteRuntimeCore
from mirror_remote.web.template import TemplateRenderer


class _FakeCatalog:
    def __init__(self) -> None:
        self.config_defaults = {"clock": {"displaySeconds": True}}
        self.scans = 0

    def sorted_available(self) -> list[dict]:
        return [{"longname": "clock", "name": "clock", "installed": True}]

    def defaults_for(self, module: str):  # type: ignore[no-untyped-def]
        return self.config_defaults.get(module)

    def scan(self) -> None:
        self.scans += 1


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


def _start_loop_thread() -> tuple[asyncio.AbstractEventLoop, threading.Thread]:
    loop = asyncio.new_event_loop()

    def _runner() -> None:
        asyncio.set_event_loop(loop)
        loop.run_forever()

    thread = threading.Thread(target=_runner, daemon=True)
    thread.start()
    return loop, thread


def _stop_loop_thread(loop: asyncio.AbstractEventLoop, thread: threading.Thread) -> None:
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=2)
    if not loop.is_closed():
        loop.close()


def _get_raw(url: str, headers: dict[str, str] | None = None) -> tuple[int, bytes]:
    req = request.Request(url, method="GET")
    for k, v in (headers or {}).items():
        req.add_header(k, v)
    try:
        with request.urlopen(req, timeout=10) as resp:
            return int(resp.status), resp.read()
    except HTTPError as e:
        return int(e.code), e.read()


def _get_json(url: str, headers: dict[str, str] | None = None) -> tuple[int, object]:
    code, body = _get_raw(url, headers)
    return code, json.loads(body.decode("utf-8"))


def _post_json(url: str, payload: object) -> tuple[int, dict]:
    body = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=body, method="POST")
    req.add_header("Content-Type", "application/json")
    try:
        with request.urlopen(req, timeout=10) as resp:
            return int(resp.status), json.loads(resp.read().decode("utf-8"))
    except HTTPError as e:
        return int(e.code), json.loads(e.read().decode("utf-8"))


async def _fake_mirror(channel: MockChannel, snapshot: dict | None, forwarded: list[Notification]) -> None:
    """Answers UPDATE with CURRENT_STATUS unless snapshot is None, records everything else."""
    while True:
        notification = await channel.next_sent(timeout_s=60)
        if notification.name == "UPDATE":
            if snapshot is not None:
                await channel.inject("CURRENT_STATUS", snapshot)
            continue
        forwarded.append(notification)


class _Harness:
    def __init__(
        self,
        tmp_path: Path,
        *,
        snapshot: dict | None = None,
        waiter_timeout_ms: int = 1000,
        renderer: TemplateRenderer | None = None,
        help_resolver=None,  # type: ignore[no-untyped-def]
        auth_token: str = "",
    ) -> None:
        self.loop, self.thread = _start_loop_thread()
        self.port = _free_port()
        self.base = f"http://127.0.0.1:{self.port}"
        self.channel = MockChannel()
        self.store = ConfigStore(tmp_path / "config" / "config.js")
        self.catalog = _FakeCatalog()
        self.runtime = RemoteRuntimeCore(
            channel=self.channel,
            settings_path=tmp_path / "settings.json",
            waiter_timeout_ms=waiter_timeout_ms,
            ip_addresses_fn=lambda: [],
        )
        self.dispatcher = ActionDispatcher(runtime=self.runtime, catalog=self.catalog, wait_margin_s=1.0)
        self.runtime.attach_dispatcher(self.dispatcher)
        self.forwarded: list[Notification] = []
        asyncio.run_coroutine_threadsafe(self.runtime.start(), self.loop).result(timeout=5)
        self.mirror = asyncio.run_coroutine_threadsafe(
            _fake_mirror(self.channel, snapshot, self.forwarded), self.loop
        )
        self.server = RemoteControlServer(
            host="127.0.0.1",
            port=self.port,
            runtime=self.runtime,
            dispatcher=self.dispatcher,
            store=self.store,
            loop=self.loop,
            catalog=self.catalog,
            renderer=renderer,
            help_resolver=help_resolver,
            wait_timeout_s=waiter_timeout_ms / 1000.0 + 1.0,
            auth_enabled=bool(auth_token),
            auth_token=auth_token,
        )
        self.server.start()

    def close(self) -> None:
        self.server.stop()
        self.mirror.cancel()
        asyncio.run_coroutine_threadsafe(self.runtime.stop(), self.loop).result(timeout=5)
        _stop_loop_thread(self.loop, self.thread)


def test_remote_unknown_action_returns_unknown_command(tmp_path) -> None:
    harness = _Harness(tmp_path)
    try:
        code, body = _get_json(f"{harness.base}/remote?action=NOT_A_REAL_ACTION")
    finally:
        harness.close()

    assert code == 400
    assert body == {
        "status": "error",
        "reason": "unknown_command",
        "info": 'original input: {"action":"NOT_A_REAL_ACTION"}',
    }


def test_remote_show_forwards_notification(tmp_path) -> None:
    harness = _Harness(tmp_path)
    try:
        code, body = _get_json(f"{harness.base}/remote?action=SHOW&module=module_1_clock&force=true")
        for _ in range(50):
            if harness.forwarded:
                break
            time.sleep(0.02)
    finally:
        harness.close()

    assert code == 200
    assert body == {"status": "success"}
    assert [(n.name, n.payload) for n in harness.forwarded] == [
        ("SHOW", {"module": "module_1_clock", "useLockStrings": None, "force": True})
    ]


def test_get_modules_and_brightness_use_fresh_snapshot(tmp_path) -> None:
    snapshot = {"moduleData": [{"identifier": "module_1_clock", "hidden": False}], "brightness": 70}
    harness = _Harness(tmp_path, snapshot=snapshot)
    try:
        modules_code, modules = _get_json(f"{harness.base}/get?data=modules")
        brightness_code, brightness = _get_json(f"{harness.base}/get?data=brightness")
        action_code, module_data = _get_json(f"{harness.base}/remote?action=MODULE_DATA")
    finally:
        harness.close()

    assert modules_code == 200
    assert modules == snapshot["moduleData"]
    assert brightness_code == 200
    assert brightness == 70
    assert action_code == 200
    assert module_data == snapshot


def test_get_brightness_without_mirror_reply_completes_after_timeout(tmp_path) -> None:
    harness = _Harness(tmp_path, snapshot=None, waiter_timeout_ms=200)
    try:
        started = time.monotonic()
        code, body = _get_json(f"{harness.base}/get?data=brightness")
        elapsed = time.monotonic() - started
    finally:
        harness.close()

    assert code == 200
    assert body is None
    assert elapsed < 0.2 + 1.0


def test_get_static_data_endpoints(tmp_path) -> None:
    harness = _Harness(tmp_path)
    try:
        _, available = _get_json(f"{harness.base}/get?data=modulesAvailable")
        _, config = _get_json(f"{harness.base}/get?data=config")
        _, defaults = _get_json(f"{harness.base}/get?data=defaultConfig&module=clock")
        unknown_code, unknown = _get_json(f"{harness.base}/get?data=bogus")
        status_code, status = _get_json(f"{harness.base}/status")
    finally:
        harness.close()

    assert available == [{"longname": "clock", "name": "clock", "installed": True}]
    assert config["modules"][0]["module"] == "helloworld"
    assert config["language"] == "en"
    assert defaults == {"displaySeconds": True}
    assert unknown_code == 400
    assert unknown["reason"] == "unknown_command"
    assert unknown["info"] == 'original input: {"data":"bogus"}'
    assert status_code == 200
    assert status["running"] is True
    assert status["channel"] == "mock"


def test_post_config_rotates_oldest_backup(tmp_path) -> None:
    config_path = tmp_path / "config" / "config.js"
    config_path.parent.mkdir()
    old_live = serialize_config({"modules": [{"module": "old"}]})
    config_path.write_text(old_live)
    for slot, mtime in ((1, 4_000), (2, 1_000), (3, 3_000), (4, 2_000)):
        backup = config_path.with_name(f"config.js.backup{slot}")
        backup.write_text(f"backup-{slot}")
        os.utime(backup, (mtime, mtime))

    harness = _Harness(tmp_path)
    new_config = {"language": "de", "modules": [{"module": "clock", "position": "top_left"}]}
    try:
        code, body = _post_json(f"{harness.base}/post?data=config", new_config)
        _, served = _get_json(f"{harness.base}/get?data=config")
    finally:
        harness.close()

    assert code == 200
    assert body == {"status": "success"}
    assert parse_config_text(config_path.read_text()) == new_config
    assert config_path.with_name("config.js.backup2").read_text() == old_live
    for slot in (1, 3, 4):
        assert config_path.with_name(f"config.js.backup{slot}").read_text() == f"backup-{slot}"
    assert served["modules"][0]["config"] == {"displaySeconds": True}


def test_post_rejects_non_object_and_broken_json(tmp_path) -> None:
    harness = _Harness(tmp_path)
    try:
        list_code, list_body = _post_json(f"{harness.base}/post?data=config", [1, 2])
        req = request.Request(f"{harness.base}/post?data=config", data=b"{nope", method="POST")
        try:
            with request.urlopen(req, timeout=5) as resp:
                broken_code = int(resp.status)
        except HTTPError as e:
            broken_code = int(e.code)
            broken_body = json.loads(e.read().decode("utf-8"))
    finally:
        harness.close()

    assert list_code == 400
    assert list_body["reason"] == "invalid_config"
    assert broken_code == 400
    assert broken_body["reason"] == "invalid_json"
    assert not (tmp_path / "config" / "config.js").exists()


def test_remote_html_renders_brightness(tmp_path) -> None:
    template = tmp_path / "remote.html"
    template.write_text("<h1>%%TRANSLATE:TITLE%%</h1><input value=\"%%REPLACE:BRIGHTNESS%%\">")
    translations = tmp_path / "translations"
    translations.mkdir()
    (translations / "en.json").write_text(json.dumps({"TITLE": "Remote"}))
    renderer = TemplateRenderer(template_path=template, translations_dir=translations)
    renderer.load_template()
    renderer.load_translation("en")

    harness = _Harness(tmp_path, snapshot={"moduleData": [], "brightness": 45}, renderer=renderer)
    try:
        code, body = _get_raw(f"{harness.base}/remote.html")
    finally:
        harness.close()

    assert code == 200
    assert body.decode("utf-8") == '<h1>Remote</h1><input value="45">'


def test_remote_html_unavailable_without_template(tmp_path) -> None:
    harness = _Harness(tmp_path, renderer=TemplateRenderer(template_path=tmp_path / "missing.html"))
    try:
        code, _ = _get_raw(f"{harness.base}/remote.html")
    finally:
        harness.close()

    assert code == 503


def test_config_help_redirects_to_resolved_url(tmp_path) -> None:
    async def _resolver(module: str) -> str | None:
        if module == "clock":
            return "https://github.com/MichMich/MagicMirror/tree/abc123/modules/default/clock"
        return None

    harness = _Harness(tmp_path, help_resolver=_resolver)
    try:
        conn = http.client.HTTPConnection("127.0.0.1", harness.port, timeout=5)
        conn.request("GET", "/config-help.html?module=clock")
        resp = conn.getresponse()
        resp.read()
        redirect = (resp.status, resp.getheader("Location"))
        conn.close()
        missing_code, _ = _get_json(f"{harness.base}/config-help.html?module=nope")
    finally:
        harness.close()

    assert redirect == (302, "https://github.com/MichMich/MagicMirror/tree/abc123/modules/default/clock")
    assert missing_code == 404


def test_auth_required_when_token_configured(tmp_path) -> None:
    harness = _Harness(tmp_path, auth_token="secret-token")
    try:
        denied_code, denied = _get_json(f"{harness.base}/status")
        allowed_code, _ = _get_json(f"{harness.base}/status", headers={"Authorization": "Bearer secret-token"})
    finally:
        harness.close()

    assert denied_code == 401
    assert denied["reason"] == "unauthorized"
    assert allowed_code == 200
