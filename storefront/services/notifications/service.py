"""
Customer email notifications.

EmailService delivers a rendered message through the configured backend
(SES, or a console backend that only logs). OrderNotifier turns order
lifecycle events into templated emails. Callers treat every send as
best-effort; failures surface as NotificationServiceError for the caller
to log.
"""

import asyncio
from typing import Any, Optional

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.services.notifications.aws_clients import SESClient, SESClientError
from storefront.services.notifications.templates import (
    TemplateEngine,
    TemplateEngineError,
)

logger = get_logger(__name__)
settings = get_settings()


class NotificationServiceError(Exception):
    """Base exception for notification service errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class NotificationDeliveryError(NotificationServiceError):
    """Raised when a message could not be delivered."""

    pass


class EmailService:
    """
    Sends email through SES or the console backend.

    Args:
        backend: "ses" or "console" (defaults to settings.email_backend)
        ses_client: SES client to use for the ses backend
    """

    def __init__(
        self,
        backend: Optional[str] = None,
        ses_client: Optional[SESClient] = None,
    ) -> None:
        self.backend = backend or settings.email_backend
        self._ses_client = ses_client
        if self.backend == "ses" and self._ses_client is None:
            self._ses_client = SESClient()

    async def send_email(self, to: str, subject: str, text: str, html: str) -> dict[str, Any]:
        """
        Deliver one message.

        Raises:
            NotificationDeliveryError: If the backend failed
        """
        if self.backend == "console":
            logger.info("Email (console backend)", to=to, subject=subject, body=text)
            return {"status": "logged", "to_addresses": [to]}

        try:
            return await asyncio.to_thread(
                self._ses_client.send_email,
                to_addresses=[to],
                subject=subject,
                body_text=text,
                body_html=html,
            )
        except SESClientError as e:
            raise NotificationDeliveryError(
                "Email delivery failed",
                to=to,
                subject=subject,
                error=str(e),
                **e.context,
            ) from e


class OrderNotifier:
    """Templated customer emails for order lifecycle events."""

    def __init__(
        self,
        email_service: EmailService,
        template_engine: Optional[TemplateEngine] = None,
    ) -> None:
        self.email_service = email_service
        self.template_engine = template_engine or TemplateEngine()

    def _context(self, order: Any, language: str, **extra: Any) -> dict[str, Any]:
        address = order.shipping_address or {}
        return {
            "order": order,
            "order_number": order.order_number,
            "customer_name": order.name,
            "total": order.total,
            "items": list(order.items),
            "shipping_address": address.get(language) or address.get("en", ""),
            "language": language,
            "orders_url": f"{settings.app_url.rstrip('/')}/profile?tab=orders",
            **extra,
        }

    async def _send(self, template_name: str, order: Any, language: str, **extra: Any) -> None:
        try:
            rendered = self.template_engine.render_email(
                template_name, self._context(order, language, **extra)
            )
        except TemplateEngineError as e:
            raise NotificationServiceError(
                "Email template could not be rendered",
                template_name=template_name,
                order_id=str(order.id),
                error=str(e),
            ) from e

        await self.email_service.send_email(
            to=order.email,
            subject=rendered.subject,
            text=rendered.text,
            html=rendered.html,
        )
        logger.info(
            "Order notification sent",
            template_name=template_name,
            order_id=str(order.id),
            order_number=order.order_number,
        )

    async def send_payment_confirmed(self, order: Any, language: str = "en") -> None:
        await self._send("payment_confirmed", order, language)

    async def send_shipped(self, order: Any, language: str = "en") -> None:
        await self._send("order_shipped", order, language)

    async def send_delivered(self, order: Any, language: str = "en") -> None:
        await self._send("order_delivered", order, language)

    async def send_payment_rejected(self, order: Any, reason: str, language: str = "en") -> None:
        await self._send("payment_rejected", order, language, reason=reason)
