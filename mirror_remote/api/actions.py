"""Action dispatch for remote commands coming from HTTP or the mirror itself."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from http import HTTPStatus
from pathlib import Path
from typing import Any

from loguru import logger

from mirror_remote.channel.protocol import NotificationType
from mirror_remote.config.schema import CommandsConfig
from mirror_remote.extensions.git_tools import clone_repository, repo_dir_name
from mirror_remote.utils.process import CommandResult, run_shell

SUCCESS: dict[str, str] = {"status": "success"}


class ActionType(StrEnum):
    """Commands accepted by `/remote?action=...` and REMOTE_ACTION notifications."""

    SHUTDOWN = "SHUTDOWN"
    REBOOT = "REBOOT"
    RESTART = "RESTART"
    MONITORON = "MONITORON"
    MONITOROFF = "MONITOROFF"
    SHOW = "SHOW"
    HIDE = "HIDE"
    BRIGHTNESS = "BRIGHTNESS"
    SAVE = "SAVE"
    MODULE_DATA = "MODULE_DATA"
    INSTALL = "INSTALL"


HOST_ACTIONS = frozenset(
    {
        ActionType.SHUTDOWN,
        ActionType.REBOOT,
        ActionType.RESTART,
        ActionType.MONITORON,
        ActionType.MONITOROFF,
    }
)


def _first(params: dict[str, list[str]], key: str) -> str | None:
    values = params.get(key, [])
    return str(values[0]) if values else None


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() == "true"


@dataclass(frozen=True, slots=True)
class ActionRequest:
    """One remote command. `raw` keeps the input as received for error echoes."""

    action: str
    module: str | None = None
    value: Any = None
    force: bool = False
    use_lock_strings: Any = None
    url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_query(cls, params: dict[str, list[str]]) -> "ActionRequest":
        raw = {key: values[0] for key, values in params.items() if values}
        return cls(
            action=str(_first(params, "action") or "").strip(),
            module=_first(params, "module"),
            value=_first(params, "value"),
            force=_to_bool(_first(params, "force")),
            use_lock_strings=_first(params, "useLockStrings"),
            url=_first(params, "url"),
            raw=raw,
        )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ActionRequest":
        return cls(
            action=str(payload.get("action") or "").strip(),
            module=payload.get("module"),
            value=payload.get("value"),
            force=_to_bool(payload.get("force")),
            use_lock_strings=payload.get("useLockStrings"),
            url=payload.get("url"),
            raw=dict(payload),
        )

    def original_input(self) -> str:
        return json.dumps(self.raw, separators=(",", ":"), ensure_ascii=False)


@dataclass(slots=True)
class ActionReply:
    body: Any
    status: HTTPStatus = HTTPStatus.OK


def unknown_command_reply(original_input: str) -> dict[str, str]:
    return {
        "status": "error",
        "reason": "unknown_command",
        "info": f"original input: {original_input}",
    }


Handler = Callable[[ActionRequest], Awaitable[ActionReply]]
ShellRunner = Callable[..., Awaitable[CommandResult]]


class ActionDispatcher:
    """Maps ActionType to a handler. Unknown actions yield None."""

    def __init__(
        self,
        *,
        runtime: Any,
        commands: CommandsConfig | None = None,
        catalog: Any | None = None,
        extensions_dir: Path | None = None,
        shell_runner: ShellRunner | None = None,
        cloner: ShellRunner | None = None,
        wait_margin_s: float = 2.0,
    ) -> None:
        self.runtime = runtime
        self.commands = commands or CommandsConfig()
        self.catalog = catalog
        self.extensions_dir = Path(extensions_dir) if extensions_dir else None
        self._run_shell = shell_runner or run_shell
        self._clone = cloner or clone_repository
        self.wait_margin_s = max(0.0, float(wait_margin_s))
        self._host_commands: dict[ActionType, str] = {
            ActionType.SHUTDOWN: self.commands.shutdown,
            ActionType.REBOOT: self.commands.reboot,
            ActionType.RESTART: self.commands.restart,
            ActionType.MONITORON: self.commands.monitor_on,
            ActionType.MONITOROFF: self.commands.monitor_off,
        }
        self._handlers: dict[ActionType, Handler] = {
            **{action: self._host_action for action in HOST_ACTIONS},
            ActionType.SHOW: self._visibility,
            ActionType.HIDE: self._visibility,
            ActionType.BRIGHTNESS: self._brightness,
            ActionType.SAVE: self._save,
            ActionType.MODULE_DATA: self._module_data,
            ActionType.INSTALL: self._install,
        }

    @staticmethod
    def resolve(action: str | None) -> ActionType | None:
        try:
            return ActionType(str(action or "").strip())
        except ValueError:
            return None

    def reply_timeout(self, action: ActionType) -> float:
        """Upper bound an HTTP thread should wait for this action's reply."""
        if action in HOST_ACTIONS:
            return self.commands.exec_timeout_seconds + self.wait_margin_s
        if action == ActionType.INSTALL:
            return (
                self.commands.clone_timeout_seconds
                + self.commands.install_timeout_seconds
                + self.wait_margin_s
            )
        if action == ActionType.MODULE_DATA:
            return self.runtime.registry.default_timeout_ms / 1000.0 + self.wait_margin_s
        return 5.0

    async def dispatch(self, request: ActionRequest) -> ActionReply | None:
        action = self.resolve(request.action)
        if action is None:
            logger.debug(f"unknown remote action: {request.original_input()}")
            return None
        logger.info(f"remote action {action} module={request.module or '-'}")
        return await self._handlers[action](request)

    async def _host_action(self, request: ActionRequest) -> ActionReply:
        command = self._host_commands[ActionType(request.action)]
        result = await self._run_shell(command, timeout_s=self.commands.exec_timeout_seconds)
        if result.ok:
            return ActionReply(dict(SUCCESS))
        return ActionReply({"status": "error", "reason": "unknown", "info": result.diagnostic})

    async def _visibility(self, request: ActionRequest) -> ActionReply:
        payload: dict[str, Any] = {
            "module": request.module,
            "useLockStrings": request.use_lock_strings,
        }
        if request.action == ActionType.SHOW and request.force:
            payload["force"] = True
        self.runtime.spawn(self.runtime.send(request.action, payload))
        return ActionReply(dict(SUCCESS))

    async def _brightness(self, request: ActionRequest) -> ActionReply:
        self.runtime.spawn(self.runtime.send(NotificationType.BRIGHTNESS, request.value))
        return ActionReply(dict(SUCCESS))

    async def _save(self, request: ActionRequest) -> ActionReply:
        del request
        self.runtime.await_fresh_state(
            lambda _snapshot: self.runtime.spawn(self.runtime.save_default_settings())
        )
        return ActionReply(dict(SUCCESS))

    async def _module_data(self, request: ActionRequest) -> ActionReply:
        del request
        snapshot = await self.runtime.wait_for_fresh_state()
        return ActionReply(snapshot)

    async def _install(self, request: ActionRequest) -> ActionReply:
        url = str(request.url or "").strip()
        if not url or self.extensions_dir is None:
            return ActionReply({"status": "error"})
        name = repo_dir_name(url)
        if not name or name in {".", ".."}:
            return ActionReply({"status": "error"})
        work_dir = self.extensions_dir / name

        cloned = await self._clone(url, work_dir, timeout_s=self.commands.clone_timeout_seconds)
        if not cloned.ok:
            logger.warning(f"install of {url} failed at clone: {cloned.diagnostic}")
            return ActionReply({"status": "error"})

        installed = await self._run_shell(
            self.commands.install_command,
            timeout_s=self.commands.install_timeout_seconds,
            cwd=work_dir,
        )
        if not installed.ok:
            logger.warning(f"install of {url} failed at dependency step: {installed.diagnostic}")
            return ActionReply({"status": "error"})

        if self.catalog is not None:
            await asyncio.to_thread(self.catalog.scan)
        logger.info(f"installed extension {name}")
        return ActionReply(dict(SUCCESS))
