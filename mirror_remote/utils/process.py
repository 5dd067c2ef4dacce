"""Bounded execution of host shell commands."""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
from dataclasses import dataclass
from pathlib import Path

from loguru import logger


@dataclass(slots=True)
class CommandResult:
    command: str
    ok: bool
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: str = ""

    @property
    def diagnostic(self) -> str:
        if self.error:
            return self.error
        detail = self.stderr.strip() or self.stdout.strip()
        return f"Command failed: {self.command} (exit {self.returncode}){': ' + detail if detail else ''}"


async def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """Kill proc and every process it spawned, then reap it without blocking on stray pipes."""
    with contextlib.suppress(ProcessLookupError, PermissionError):
        os.killpg(proc.pid, signal.SIGKILL)
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    with contextlib.suppress(asyncio.TimeoutError):
        await asyncio.wait_for(proc.wait(), timeout=1.0)


async def run_shell(command: str, *, timeout_s: float, cwd: Path | None = None) -> CommandResult:
    """Run a shell command, treating a timeout as failure."""
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except Exception as e:
        logger.warning(f"failed to spawn '{command}': {e}")
        return CommandResult(command=command, ok=False, error=str(e))

    try:
        stdout_raw, stderr_raw = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        await _kill_process_group(proc)
        logger.warning(f"'{command}' timed out after {timeout_s}s")
        return CommandResult(command=command, ok=False, error=f"Command timed out after {timeout_s}s: {command}")

    result = CommandResult(
        command=command,
        ok=proc.returncode == 0,
        returncode=proc.returncode,
        stdout=stdout_raw.decode("utf-8", errors="replace"),
        stderr=stderr_raw.decode("utf-8", errors="replace"),
    )
    if not result.ok:
        logger.warning(result.diagnostic)
    return result


async def run_exec(*args: str, timeout_s: float, cwd: Path | None = None) -> CommandResult:
    """Run a program without a shell, treating a timeout as failure."""
    command = " ".join(args)
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except FileNotFoundError:
        return CommandResult(command=command, ok=False, returncode=127, error=f"{args[0]} not found")
    except Exception as e:
        return CommandResult(command=command, ok=False, error=str(e))

    try:
        stdout_raw, stderr_raw = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        await _kill_process_group(proc)
        return CommandResult(command=command, ok=False, error=f"Command timed out after {timeout_s}s: {command}")

    return CommandResult(
        command=command,
        ok=proc.returncode == 0,
        returncode=proc.returncode,
        stdout=stdout_raw.decode("utf-8", errors="replace"),
        stderr=stderr_raw.decode("utf-8", errors="replace"),
    )
