"""UI template rendering."""

from mirror_remote.web.template import FALLBACK_LANGUAGE, STATIC_DIR, TemplateRenderer

__all__ = ["FALLBACK_LANGUAGE", "STATIC_DIR", "TemplateRenderer"]
