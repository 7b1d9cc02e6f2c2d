"""
Email template rendering with Jinja2.

Each notification ``name`` has three files in the template directory:
``{name}_subject.txt``, ``{name}.html`` and ``{name}.txt``.
"""

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import (
    Environment,
    FileSystemLoader,
    TemplateError,
    TemplateNotFound,
    select_autoescape,
)

from storefront.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).parent.parent.parent / "templates" / "notifications"


class TemplateEngineError(Exception):
    """Base exception for template engine errors."""

    def __init__(self, message: str, template_name: Optional[str] = None):
        super().__init__(message)
        self.template_name = template_name


class TemplateNotFoundError(TemplateEngineError):
    """Raised when a template cannot be found."""

    pass


class TemplateRenderError(TemplateEngineError):
    """Raised when template rendering fails."""

    pass


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    text: str
    html: str


class TemplateEngine:
    """Renders notification emails from the template directory."""

    def __init__(self, template_dir: Optional[Path] = None):
        self.template_dir = Path(template_dir or DEFAULT_TEMPLATE_DIR)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["currency"] = self._format_currency
        self.env.filters["date"] = self._format_date

    def render_email(self, template_name: str, context: Dict[str, Any]) -> RenderedEmail:
        """
        Render subject, HTML and text bodies.

        Raises:
            TemplateNotFoundError: If any of the three files is missing
            TemplateRenderError: If rendering fails
        """
        try:
            subject = self.env.get_template(f"{template_name}_subject.txt").render(**context)
            html = self.env.get_template(f"{template_name}.html").render(**context)
            text = self.env.get_template(f"{template_name}.txt").render(**context)
        except TemplateNotFound as e:
            logger.error("Email template not found", template_name=template_name, error=str(e))
            raise TemplateNotFoundError(
                f"Email template not found: {template_name}",
                template_name=template_name,
            ) from e
        except TemplateError as e:
            logger.error(
                "Email template rendering failed",
                template_name=template_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TemplateRenderError(
                f"Failed to render email template: {e}",
                template_name=template_name,
            ) from e

        return RenderedEmail(subject=" ".join(subject.split()), text=text, html=html)

    @staticmethod
    def _format_currency(value: Any) -> str:
        return f"${Decimal(str(value)):,.2f}"

    @staticmethod
    def _format_date(value: Any) -> str:
        if value is None:
            return ""
        try:
            return value.strftime("%Y-%m-%d")
        except AttributeError:
            return str(value)
