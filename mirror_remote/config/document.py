"""Typed model of the mirror configuration document."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ModuleEntry(BaseModel):
    """One extension instance in the mirror config."""

    model_config = ConfigDict(extra="allow")

    module: str
    config: dict[str, Any] | None = None


class ConfigDocument(BaseModel):
    """Full mirror config. Unknown top-level keys are kept as-is."""

    model_config = ConfigDict(extra="allow")

    modules: list[ModuleEntry] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True)

    def module_names(self) -> list[str]:
        return [entry.module for entry in self.modules]


DEFAULT_MIRROR_CONFIG: dict[str, Any] = {
    "address": "localhost",
    "port": 8080,
    "kioskmode": False,
    "ipWhitelist": ["127.0.0.1", "::ffff:127.0.0.1", "::1"],
    "language": "en",
    "timeFormat": 24,
    "units": "metric",
    "zoom": 1,
    "modules": [
        {
            "module": "helloworld",
            "position": "upper_third",
            "config": {
                "text": "Please create a config file.",
            },
        },
    ],
}
