"""Email template rendering powered by Jinja2."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from jinja2.sandbox import SandboxedEnvironment

from mailroom.core.errors import ConstraintViolation

TEMPLATE_DIR = Path(__file__).resolve().parents[1] / "templates"

# System emails shipped with the package (confirmation mail and friends).
_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)

# Tenant-authored content is untrusted, so it renders in a sandbox.
_sandbox = SandboxedEnvironment(autoescape=True)
_text_sandbox = SandboxedEnvironment(autoescape=False)


def render_template(template_name: str, **context: Any) -> str:
    """Render a template file with the provided context."""

    template = _env.get_template(template_name)
    return template.render(**context)


def render_string(source: str, *, html: bool = True, **context: Any) -> str:
    """Render tenant-authored template source with merge-tag values."""

    env = _sandbox if html else _text_sandbox
    try:
        return env.from_string(source).render(**context)
    except TemplateError as exc:
        raise ConstraintViolation(f"Template could not be rendered: {exc}") from exc


def validate_source(source: str) -> None:
    try:
        _sandbox.parse(source)
    except TemplateError as exc:
        raise ConstraintViolation(f"Invalid template syntax: {exc}") from exc
