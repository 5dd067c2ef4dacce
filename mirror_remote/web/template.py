"""UI template and translation handling."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

FALLBACK_LANGUAGE = "en"
STATIC_DIR = Path(__file__).parent / "static"


class TemplateRenderer:
    """Fills `%%TRANSLATE:KEY%%` and `%%REPLACE:BRIGHTNESS%%` placeholders in the UI page."""

    def __init__(self, *, template_path: Path | None = None, translations_dir: Path | None = None) -> None:
        self.template_path = Path(template_path) if template_path else None
        self.translations_dir = Path(translations_dir) if translations_dir else None
        self.template = ""
        self.translation: dict[str, str] = {}
        self.language = ""

    @property
    def loaded(self) -> bool:
        return bool(self.template)

    def load_template(self) -> bool:
        if self.template_path is None:
            return False
        try:
            self.template = self.template_path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"UI template {self.template_path} not loaded: {e}")
            return False
        return True

    def load_translation(self, language: str) -> bool:
        """Switch translations; keeps the previous set if the language file is missing."""
        if self.translations_dir is None:
            return False
        lang = str(language or "").strip() or FALLBACK_LANGUAGE
        if not lang.replace("-", "").replace("_", "").isalnum():
            logger.warning(f"ignoring invalid language code {lang!r}")
            return False
        path = self.translations_dir / f"{lang}.json"
        try:
            with path.open(encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return False
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"translation {path} unreadable: {e}")
            return False
        if not isinstance(data, dict):
            return False
        self.translation = {str(k): str(v) for k, v in data.items()}
        self.language = lang
        return True

    def translate(self, text: str) -> str:
        for key, value in self.translation.items():
            text = text.replace(f"%%TRANSLATE:{key}%%", value)
        return text

    def render(self, brightness: Any = 100) -> str:
        data = self.translate(self.template)
        if brightness is None:
            brightness = 100
        return data.replace("%%REPLACE:BRIGHTNESS%%", str(brightness), 1)
