"""Backup-rotated persistence and defaulting of the mirror config document."""

from __future__ import annotations

import asyncio
import copy
import json
import os
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import json_repair
from loguru import logger

from mirror_remote.config.document import DEFAULT_MIRROR_CONFIG, ConfigDocument

CONFIG_HEADER = (
    "/*************** AUTO GENERATED BY REMOTE CONTROL MODULE ***************/\n\nvar config = \n"
)
CONFIG_FOOTER = (
    "\n\n/*************** DO NOT EDIT THE LINE BELOW ***************/\n"
    "if (typeof module !== 'undefined') {module.exports = config;}\n"
)

CopyFn = Callable[[Path, Path], Any]


@dataclass(slots=True)
class SaveResult:
    """Outcome of a rotate-and-save call."""

    ok: bool
    backup_slot: int | None = None
    backup_path: Path | None = None
    reason: str = ""  # invalid_config | backup_failed | write_failed
    error: str = ""


def serialize_config(doc: ConfigDocument | dict[str, Any]) -> str:
    """Render a config document as a loadable config script."""
    data = doc.to_dict() if isinstance(doc, ConfigDocument) else doc
    return CONFIG_HEADER + json.dumps(data, indent=4, ensure_ascii=False) + CONFIG_FOOTER


def parse_config_text(text: str) -> dict[str, Any]:
    """Extract the config object from a config script or plain JSON text."""
    body = text
    marker = body.find("var config")
    if marker >= 0:
        eq = body.find("=", marker)
        body = body[eq + 1:] if eq >= 0 else body[marker + len("var config"):]
    tail = body.find("if (typeof module")
    if tail >= 0:
        body = body[:tail]
    body = body.strip()
    # drop the footer comment and statement terminator
    footer_comment = body.rfind("/***")
    if footer_comment > 0 and footer_comment > body.rfind("}"):
        body = body[:footer_comment].strip()
    body = body.rstrip(";").strip()
    if not body:
        raise ValueError("config body is empty")
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        data = json_repair.loads(body)
        logger.debug("config body is not strict JSON, parsed leniently")
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def merge_defaults(
    doc: ConfigDocument,
    extension_defaults: Mapping[str, Mapping[str, Any] | None],
) -> ConfigDocument:
    """Return a copy of doc where each module config carries its missing default keys."""
    data = copy.deepcopy(doc.to_dict())
    for entry in data.get("modules") or []:
        settings = entry.get("config")
        if not isinstance(settings, dict):
            settings = {}
            entry["config"] = settings
        defaults = extension_defaults.get(str(entry.get("module") or "")) or {}
        for key, value in defaults.items():
            if key not in settings:
                settings[key] = copy.deepcopy(value)
    return ConfigDocument.model_validate(data)


def backup_slot_path(config_path: Path, slot: int) -> Path:
    return config_path.with_name(f"{config_path.name}.backup{slot}")


def select_backup_slot(config_path: Path, history_size: int = 5) -> int | None:
    """
    Pick the backup slot the next save writes to.

    The first slot that does not exist yet wins. Otherwise the slot with the
    oldest modification time wins, lowest slot number on ties. Returns None
    when no slot could be inspected.
    """
    best: int | None = None
    best_mtime: float | None = None
    for slot in range(1, max(1, int(history_size))):
        try:
            mtime = backup_slot_path(config_path, slot).stat().st_mtime
        except FileNotFoundError:
            return slot
        except OSError as e:
            logger.warning(f"cannot inspect backup slot {slot}: {e}")
            continue
        if best_mtime is None or mtime < best_mtime:
            best = slot
            best_mtime = mtime
    return best


def _write_text_replace(path: Path, text: str) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)


class ConfigStore:
    """Owns the in-memory mirror config and its on-disk copy."""

    def __init__(
        self,
        config_path: Path,
        *,
        backup_history_size: int = 5,
        base_defaults: dict[str, Any] | None = None,
        copy_fn: CopyFn | None = None,
    ) -> None:
        self.config_path = Path(config_path)
        self.backup_history_size = max(2, int(backup_history_size))
        self.base_defaults = copy.deepcopy(base_defaults or DEFAULT_MIRROR_CONFIG)
        self._copy_fn = copy_fn or shutil.copyfile
        self.current: ConfigDocument = ConfigDocument.model_validate(copy.deepcopy(self.base_defaults))

    def default_document(self) -> ConfigDocument:
        return ConfigDocument.model_validate(copy.deepcopy(self.base_defaults))

    def load_or_default(self) -> ConfigDocument:
        """Load the live config, falling back to defaults on any failure."""
        try:
            text = self.config_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning(
                f"Could not find config file {self.config_path}. Starting with default configuration."
            )
            self.current = self.default_document()
            return self.current
        except OSError as e:
            logger.warning(f"Could not load config file. Starting with default configuration. Error found: {e}")
            self.current = self.default_document()
            return self.current
        except UnicodeDecodeError as e:
            logger.warning(
                f"Could not validate config file. Please correct syntax errors. "
                f"Starting with default configuration. ({e})"
            )
            self.current = self.default_document()
            return self.current

        try:
            data = parse_config_text(text)
            merged = {**copy.deepcopy(self.base_defaults), **data}
            self.current = ConfigDocument.model_validate(merged)
        except ValueError as e:
            logger.warning(
                f"Could not validate config file. Please correct syntax errors. "
                f"Starting with default configuration. ({e})"
            )
            self.current = self.default_document()
        return self.current

    def get_config(self, extension_defaults: Mapping[str, Mapping[str, Any] | None]) -> ConfigDocument:
        """Current config with extension defaults filled in."""
        return merge_defaults(self.current, extension_defaults)

    def backup_path(self, slot: int) -> Path:
        return backup_slot_path(self.config_path, slot)

    def select_backup_slot(self) -> int | None:
        return select_backup_slot(self.config_path, self.backup_history_size)

    def list_backups(self) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        for slot in range(1, self.backup_history_size):
            path = self.backup_path(slot)
            try:
                mtime: float | None = path.stat().st_mtime
            except OSError:
                mtime = None
            items.append({"slot": slot, "path": str(path), "mtime": mtime})
        return items

    async def rotate_and_save(self, new_doc: ConfigDocument | dict[str, Any]) -> SaveResult:
        """
        Back up the live config into a rotation slot, then write new_doc.

        The live file is only replaced after the backup copy completed.
        """
        try:
            doc = new_doc if isinstance(new_doc, ConfigDocument) else ConfigDocument.model_validate(new_doc)
        except ValueError as e:
            return SaveResult(ok=False, reason="invalid_config", error=f"invalid config: {e}")

        slot = self.select_backup_slot()
        if slot is None:
            logger.error("Backing up config failed, not saving!")
            return SaveResult(ok=False, reason="backup_failed", error="no backup slot available")
        backup_path = self.backup_path(slot)

        if self.config_path.exists():
            try:
                await asyncio.to_thread(self._copy_fn, self.config_path, backup_path)
            except Exception as e:
                logger.error(f"Backing up config to {backup_path} failed, not saving: {e}")
                return SaveResult(
                    ok=False,
                    backup_slot=slot,
                    backup_path=backup_path,
                    reason="backup_failed",
                    error=f"backup failed: {e}",
                )

        text = serialize_config(doc)
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(_write_text_replace, self.config_path, text)
        except OSError as e:
            logger.error(f"Writing config {self.config_path} failed: {e}")
            return SaveResult(
                ok=False,
                backup_slot=slot,
                backup_path=backup_path,
                reason="write_failed",
                error=f"write failed: {e}",
            )

        self.current = doc
        logger.info(f"saved new config (backup slot {slot})")
        return SaveResult(ok=True, backup_slot=slot, backup_path=backup_path)
