"""Tests for templated order emails and their delivery backends."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError

from conftest import make_order
from storefront.services.notifications.aws_clients import SESClient, SESClientError
from storefront.services.notifications.service import (
    EmailService,
    NotificationDeliveryError,
    NotificationServiceError,
    OrderNotifier,
)
from storefront.services.notifications.templates import (
    TemplateEngine,
    TemplateNotFoundError,
)


def client_error(code: str, message: str = "refused") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, "SendEmail")


def ses_client(boto_client) -> SESClient:
    return SESClient(client=boto_client, max_retries=2, retry_backoff=0)


# ============================================================================
# Templates
# ============================================================================


class TestTemplates:
    def test_payment_confirmed_in_english(self) -> None:
        order = make_order(total="1234.50")
        engine = TemplateEngine()

        rendered = engine.render_email(
            "payment_confirmed",
            OrderNotifier(EmailService(backend="console"))._context(order, "en"),
        )

        assert rendered.subject == f"Payment Confirmed - Order {order.order_number}"
        assert order.order_number in rendered.text
        assert "<html" in rendered.html.lower()

    def test_payment_confirmed_in_traditional_chinese(self) -> None:
        order = make_order()
        notifier = OrderNotifier(EmailService(backend="console"))

        rendered = notifier.template_engine.render_email(
            "payment_confirmed", notifier._context(order, "zh-TW")
        )

        assert rendered.subject.startswith("付款已確認")

    def test_rejection_includes_reason(self) -> None:
        order = make_order()
        notifier = OrderNotifier(EmailService(backend="console"))

        rendered = notifier.template_engine.render_email(
            "payment_rejected", notifier._context(order, "en", reason="Transfer not received")
        )

        assert "Reason: Transfer not received" in rendered.text

    def test_missing_template(self) -> None:
        with pytest.raises(TemplateNotFoundError):
            TemplateEngine().render_email("no_such_template", {})

    def test_currency_filter(self) -> None:
        assert TemplateEngine._format_currency("1234.5") == "$1,234.50"


# ============================================================================
# Delivery
# ============================================================================


class TestEmailService:
    @pytest.mark.asyncio
    async def test_console_backend_only_logs(self) -> None:
        result = await EmailService(backend="console").send_email(
            "mei@example.com", "Hello", "text", "<p>html</p>"
        )

        assert result == {"status": "logged", "to_addresses": ["mei@example.com"]}

    @pytest.mark.asyncio
    async def test_ses_backend_sends(self) -> None:
        boto_client = MagicMock()
        boto_client.send_email.return_value = {"MessageId": "msg-1"}
        service = EmailService(backend="ses", ses_client=ses_client(boto_client))

        result = await service.send_email("mei@example.com", "Hello", "text", "<p>html</p>")

        assert result["message_id"] == "msg-1"
        params = boto_client.send_email.call_args.kwargs
        assert params["Destination"] == {"ToAddresses": ["mei@example.com"]}
        assert params["Message"]["Body"]["Html"]["Data"] == "<p>html</p>"

    @pytest.mark.asyncio
    async def test_rejected_message_is_a_delivery_error(self) -> None:
        boto_client = MagicMock()
        boto_client.send_email.side_effect = client_error("MessageRejected")
        service = EmailService(backend="ses", ses_client=ses_client(boto_client))

        with pytest.raises(NotificationDeliveryError) as exc_info:
            await service.send_email("mei@example.com", "Hello", "text", "")

        assert exc_info.value.context["error_code"] == "MessageRejected"
        assert boto_client.send_email.call_count == 1


class TestSESClient:
    def test_throttling_is_retried(self) -> None:
        boto_client = MagicMock()
        boto_client.send_email.side_effect = [
            client_error("Throttling"),
            {"MessageId": "msg-2"},
        ]

        result = ses_client(boto_client).send_email(["mei@example.com"], "Hi", "text")

        assert result["message_id"] == "msg-2"
        assert boto_client.send_email.call_count == 2

    def test_gives_up_after_retries(self) -> None:
        boto_client = MagicMock()
        boto_client.send_email.side_effect = client_error("Throttling")

        with pytest.raises(SESClientError, match="after 2 attempts"):
            ses_client(boto_client).send_email(["mei@example.com"], "Hi", "text")

    def test_requires_recipient(self) -> None:
        with pytest.raises(SESClientError):
            ses_client(MagicMock()).send_email([], "Hi", "text")


# ============================================================================
# Order notifier
# ============================================================================


class TestOrderNotifier:
    @pytest.mark.asyncio
    async def test_shipped_email_goes_to_customer(self) -> None:
        email_service = AsyncMock()
        order = make_order()

        await OrderNotifier(email_service).send_shipped(order)

        kwargs = email_service.send_email.await_args.kwargs
        assert kwargs["to"] == "mei@example.com"
        assert order.order_number in kwargs["subject"]

    @pytest.mark.asyncio
    async def test_template_failure_is_a_service_error(self) -> None:
        engine = MagicMock()
        engine.render_email.side_effect = TemplateNotFoundError("missing")
        email_service = AsyncMock()

        with pytest.raises(NotificationServiceError):
            await OrderNotifier(email_service, engine).send_delivered(make_order())

        email_service.send_email.assert_not_awaited()
