"""
Template Engine - renders message subjects, bodies and titles

Templates use Jinja2 syntax ({{ customer_name }}) evaluated in a sandboxed
environment. Formatting helpers are available both as functions and filters:

    {{ currency(total_amount, "GBP") }}  ==  {{ total_amount|currency("GBP") }}

Rendering is pure: the output depends only on the template string and the
variable bag. Pass ``html=True`` for email bodies: variables are then
HTML-escaped unless marked ``|safe``. Subjects, SMS and inbox text render raw.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Mapping

from jinja2 import Template, TemplateError, meta
from jinja2.sandbox import SandboxedEnvironment

from notifier.core.exceptions import TemplateRenderError
from notifier.core.logging import get_logger

logger = get_logger(__name__)


CURRENCY_SYMBOLS = {
    "GBP": "£",
    "USD": "$",
    "EUR": "€",
}


def currency(amount_minor: Any, code: str = "GBP") -> str:
    """Format an integer amount in minor units: 4999 -> "£49.99" """
    symbol = CURRENCY_SYMBOLS.get(code, code)
    return f"{symbol}{float(amount_minor) / 100:.2f}"


def _coerce_datetime(value: Any) -> datetime | date:
    if isinstance(value, (datetime, date)):
        return value
    text = str(value)
    # fromisoformat() only accepts a trailing "Z" from Python 3.11 onwards
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def format_date(value: Any, fmt: str = "short") -> str:
    """
    Format a date with one of the presets:

    - short: 5 Mar 2025
    - long:  5 March 2025
    - time:  14:30
    - anything else: 05/03/2025
    """
    d = _coerce_datetime(value)

    if fmt == "short":
        return f"{d.day} {d.strftime('%b %Y')}"
    if fmt == "long":
        return f"{d.day} {d.strftime('%B %Y')}"
    if fmt == "time":
        if not isinstance(d, datetime):
            return "00:00"
        return d.strftime("%H:%M")
    return d.strftime("%d/%m/%Y")


def uppercase(text: Any) -> str:
    return str(text).upper() if text else ""


def lowercase(text: Any) -> str:
    return str(text).lower() if text else ""


def capitalize(text: Any) -> str:
    return str(text).capitalize() if text else ""


DEFAULT_HELPERS: dict[str, Callable[..., str]] = {
    "currency": currency,
    "format_date": format_date,
    "uppercase": uppercase,
    "lowercase": lowercase,
    "capitalize": capitalize,
}


@dataclass
class TemplateValidation:
    """Result of checking a variable bag against a template"""
    valid: bool
    missing: list[str] = field(default_factory=list)


@dataclass
class TemplateTestResult:
    """Result of a trial render with sample data"""
    success: bool
    output: str | None = None
    error: str | None = None


class CompiledTemplate:
    """A parsed template that can be rendered repeatedly"""

    def __init__(self, source: str, template: Template):
        self.source = source
        self._template = template

    def render(self, variables: Mapping[str, Any] | None = None) -> str:
        try:
            return self._template.render(dict(variables or {}))
        except Exception as e:
            raise TemplateRenderError(self.source, e) from e


class TemplateEngine:
    """
    Jinja2 based renderer with a per-engine helper table.

    Each engine owns its environment, so helpers passed to one engine never
    leak into another.
    """

    def __init__(self, helpers: Mapping[str, Callable[..., str]] | None = None):
        self.helpers = dict(DEFAULT_HELPERS if helpers is None else helpers)
        self._env = self._build_env(autoescape=False)
        self._html_env = self._build_env(autoescape=True)

    def _build_env(self, autoescape: bool) -> SandboxedEnvironment:
        env = SandboxedEnvironment(autoescape=autoescape, keep_trailing_newline=True)
        env.globals.update(self.helpers)
        env.filters.update(self.helpers)
        return env

    def precompile(self, template: str, html: bool = False) -> CompiledTemplate:
        """
        Parse a template once for repeated rendering.

        With ``html`` the template output escapes variables for an HTML body.

        Raises:
            TemplateRenderError: If the template has a syntax error
        """
        try:
            env = self._html_env if html else self._env
            compiled = env.from_string(template)
        except TemplateError as e:
            raise TemplateRenderError(template, e) from e
        return CompiledTemplate(template, compiled)

    def render(
        self,
        template: str,
        variables: Mapping[str, Any] | None = None,
        html: bool = False,
    ) -> str:
        """
        Render a template with variables.

        Missing variables render as empty strings; helper failures and
        syntax errors raise TemplateRenderError.
        """
        return self.precompile(template, html=html).render(variables)

    def render_batch(
        self,
        templates: list[str],
        variables: Mapping[str, Any] | None = None
    ) -> list[str]:
        """Render several templates with the same variables"""
        return [self.render(template, variables) for template in templates]

    def extract_variables(self, template: str) -> list[str]:
        """
        Names of the variables a template reads, sorted.

        Helper names and names bound inside the template (loop variables,
        {% set %}) are excluded.
        """
        try:
            ast = self._env.parse(template)
        except TemplateError as e:
            raise TemplateRenderError(template, e) from e
        names = meta.find_undeclared_variables(ast)
        return sorted(name for name in names if name not in self.helpers)

    def validate_variables(
        self,
        template: str,
        variables: Mapping[str, Any],
        required_vars: list[str] | None = None
    ) -> TemplateValidation:
        """
        Check that every variable the template uses is present in the bag.

        When ``required_vars`` is given only those names are checked.
        """
        names = required_vars if required_vars is not None else self.extract_variables(template)
        missing = [name for name in names if name not in variables]
        return TemplateValidation(valid=not missing, missing=missing)

    def test_template(
        self,
        template: str,
        sample_variables: Mapping[str, Any] | None = None
    ) -> TemplateTestResult:
        """Render with sample data and report the outcome instead of raising"""
        try:
            output = self.render(template, sample_variables)
        except TemplateRenderError as e:
            logger.info(
                "Template test render failed",
                extra_data={"error": str(e.original_error)}
            )
            return TemplateTestResult(success=False, error=str(e.original_error))
        return TemplateTestResult(success=True, output=output)
