"""Catalog of known and installed mirror extensions."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from mirror_remote.utils.helpers import capitalize_first

SKIPPED_DIRS = {"node_modules", "default"}


@dataclass(slots=True)
class ExtensionDescriptor:
    longname: str
    name: str
    installed: bool = False
    author: str = ""
    desc: str = ""
    id: str = ""
    url: str = ""
    config_default: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtensionDescriptor":
        known = {"longname", "name", "installed", "author", "desc", "id", "url", "configDefault"}
        longname = str(data.get("longname") or "").strip()
        return cls(
            longname=longname,
            name=str(data.get("name") or longname),
            installed=bool(data.get("installed", False)),
            author=str(data.get("author") or ""),
            desc=str(data.get("desc") or ""),
            id=str(data.get("id") or ""),
            url=str(data.get("url") or ""),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "longname": self.longname,
                "name": self.name,
                "installed": self.installed,
                "author": self.author,
                "desc": self.desc,
                "id": self.id,
                "url": self.url,
            }
        )
        if self.config_default is not None:
            data["configDefault"] = self.config_default
        return data


def load_extension_defaults(extension_dir: Path) -> dict[str, Any] | None:
    """Read `defaults.json` shipped beside an extension, if any."""
    path = extension_dir / "defaults.json"
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not load default config of {extension_dir.name}: {e}")
        return None
    if not isinstance(data, dict):
        logger.error(f"Default config of {extension_dir.name} must be an object")
        return None
    return data


class ExtensionCatalog:
    """Known extensions (from modules.json) merged with what is installed on disk."""

    def __init__(
        self,
        *,
        extensions_dir: Path,
        default_extensions_dir: Path,
        catalog_path: Path | None = None,
        default_modules: list[str] | None = None,
        mirror_repo_url: str = "https://github.com/MichMich/MagicMirror",
    ) -> None:
        self.extensions_dir = Path(extensions_dir)
        self.default_extensions_dir = Path(default_extensions_dir)
        self.catalog_path = Path(catalog_path) if catalog_path else None
        self.default_modules = list(default_modules or [])
        self.mirror_repo_url = mirror_repo_url
        self.available: list[ExtensionDescriptor] = []
        self.installed: list[str] = []
        self.config_defaults: dict[str, dict[str, Any] | None] = {}

    def scan(self) -> list[ExtensionDescriptor]:
        """Rebuild the catalog from modules.json, default modules and installed directories."""
        available = [ExtensionDescriptor.from_dict(item) for item in self._read_catalog()]
        config_defaults: dict[str, dict[str, Any] | None] = {}

        for module in self.default_modules:
            descriptor = ExtensionDescriptor(
                longname=module,
                name=capitalize_first(module),
                installed=True,
                author="MichMich",
                id="MichMich/MagicMirror",
                url=f"{self.mirror_repo_url}/wiki/MagicMirror%C2%B2-Modules#default-modules",
            )
            descriptor.config_default = load_extension_defaults(self.default_extensions_dir / module)
            config_defaults[module] = descriptor.config_default
            available.append(descriptor)

        installed: list[str] = []
        by_name = {item.longname: item for item in available}
        if self.extensions_dir.is_dir():
            for path in sorted(self.extensions_dir.iterdir()):
                if path.name in SKIPPED_DIRS or not path.is_dir():
                    continue
                installed.append(path.name)
                defaults = load_extension_defaults(path)
                config_defaults[path.name] = defaults
                descriptor = by_name.get(path.name)
                if descriptor is not None:
                    descriptor.installed = True
                    descriptor.config_default = defaults
        else:
            logger.warning(f"extensions directory {self.extensions_dir} does not exist")

        self.available = available
        self.installed = installed
        self.config_defaults = config_defaults
        logger.debug(f"extension catalog: {len(available)} available, {len(installed)} installed")
        return available

    def sorted_available(self) -> list[dict[str, Any]]:
        return [item.to_dict() for item in sorted(self.available, key=lambda item: item.name.lower())]

    def defaults_for(self, module: str) -> dict[str, Any] | None:
        return self.config_defaults.get(module)

    def _read_catalog(self) -> list[dict[str, Any]]:
        if self.catalog_path is None:
            return []
        try:
            with self.catalog_path.open(encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.warning(f"extension catalog {self.catalog_path} not found")
            return []
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"extension catalog {self.catalog_path} unreadable: {e}")
            return []
        if not isinstance(data, list):
            logger.warning(f"extension catalog {self.catalog_path} must be a JSON list")
            return []
        return [item for item in data if isinstance(item, dict) and item.get("longname")]
