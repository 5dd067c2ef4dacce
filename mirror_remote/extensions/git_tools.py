"""Git helpers for installing extensions and resolving their source URLs."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse

from loguru import logger

from mirror_remote.utils.process import CommandResult, run_exec


def repo_dir_name(url: str) -> str:
    """Directory name an extension cloned from url is stored under."""
    path = urlparse(url).path if "://" in url else url.split(":", 1)[-1]
    name = path.rstrip("/").rsplit("/", 1)[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return name


def normalize_remote_url(url: str) -> str:
    """Turn a fetch URL (https or scp-like ssh) into a browsable https URL."""
    text = str(url or "").strip()
    if text.endswith(".git"):
        text = text[: -len(".git")]
    if text.startswith("git@"):
        host, _, path = text[len("git@"):].partition(":")
        text = f"https://{host}/{path.lstrip('/')}"
    elif text.startswith("ssh://"):
        parsed = urlparse(text)
        text = f"https://{parsed.hostname}{parsed.path}"
    return text.rstrip("/")


async def clone_repository(url: str, dest: Path, *, timeout_s: float) -> CommandResult:
    result = await run_exec("git", "clone", url, str(dest), timeout_s=timeout_s)
    if not result.ok:
        logger.warning(f"git clone {url} failed: {result.diagnostic}")
    return result


async def head_revision(repo_dir: Path, *, timeout_s: float = 10.0) -> str:
    result = await run_exec("git", "rev-parse", "HEAD", cwd=repo_dir, timeout_s=timeout_s)
    if not result.ok:
        logger.warning(f"git rev-parse in {repo_dir} failed: {result.diagnostic}")
        return ""
    return result.stdout.strip()


async def remote_fetch_url(repo_dir: Path, *, timeout_s: float = 10.0) -> str:
    """Fetch URL of the first configured remote."""
    result = await run_exec("git", "remote", "-v", cwd=repo_dir, timeout_s=timeout_s)
    if not result.ok:
        logger.warning(f"git remote in {repo_dir} failed: {result.diagnostic}")
        return ""
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 3 and parts[2] == "(fetch)":
            return parts[1]
    return ""


async def extension_help_url(
    module: str,
    *,
    extensions_dir: Path,
    mirror_root: Path,
    default_modules: list[str],
    mirror_repo_url: str,
) -> str | None:
    """Repository URL documenting an extension, pinned to its checked-out revision."""
    if module in default_modules:
        revision = await head_revision(mirror_root)
        return f"{mirror_repo_url.rstrip('/')}/tree/{revision}/modules/default/{module}"

    repo_dir = extensions_dir / module
    if not module or "/" in module or ".." in module or not repo_dir.is_dir():
        return None
    base_url = normalize_remote_url(await remote_fetch_url(repo_dir))
    if not base_url:
        return None
    revision = await head_revision(repo_dir)
    return f"{base_url}/tree/{revision}"
