"""
AWS SES client for customer emails.

boto3 is synchronous; EmailService calls ``send_email`` from a worker
thread. Throttling and connection failures are retried with exponential
backoff, rejections that cannot succeed later fail on the first attempt.
"""

import time
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from storefront.core.config import get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

NON_RETRYABLE_SES_ERRORS = frozenset(
    {
        "MessageRejected",
        "MailFromDomainNotVerified",
        "ConfigurationSetDoesNotExist",
        "AccountSendingPausedException",
    }
)


class SESClientError(Exception):
    """Raised when SES refuses a message or stays unreachable."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


def build_message(subject: str, body_text: str, body_html: Optional[str]) -> dict[str, Any]:
    """SES ``Message`` structure with UTF-8 subject and bodies."""
    body: dict[str, Any] = {"Text": {"Data": body_text, "Charset": "UTF-8"}}
    if body_html:
        body["Html"] = {"Data": body_html, "Charset": "UTF-8"}
    return {"Subject": {"Data": subject, "Charset": "UTF-8"}, "Body": body}


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


class SESClient:
    """
    Thin wrapper over the boto3 SES client.

    Args:
        region_name: AWS region (defaults to settings)
        max_retries: Attempts per message
        retry_backoff: First backoff in seconds, doubled per attempt
        client: Preconfigured boto3 SES client
    """

    def __init__(
        self,
        region_name: Optional[str] = None,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        client: Any = None,
    ) -> None:
        self.region_name = region_name or settings.aws_region
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._client = client or boto3.client(
            "ses",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=self.region_name,
        )

    def send_email(
        self,
        to_addresses: list[str],
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        from_address: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Send one message.

        Returns:
            ``{"message_id", "status": "sent", "to_addresses"}``

        Raises:
            SESClientError: On a non-retryable rejection or after the last attempt
        """
        if not to_addresses:
            raise SESClientError("At least one recipient email address is required")

        params = {
            "Source": from_address or settings.ses_from_email,
            "Destination": {"ToAddresses": to_addresses},
            "Message": build_message(subject, body_text, body_html),
        }

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                message_id = self._client.send_email(**params)["MessageId"]
            except ClientError as e:
                code = error_code(e)
                logger.warning("SES rejected send", attempt=attempt, error_code=code)
                if code in NON_RETRYABLE_SES_ERRORS:
                    raise SESClientError(
                        f"SES error: {e.response.get('Error', {}).get('Message', code)}",
                        error_code=code,
                        to_addresses=to_addresses,
                    ) from e
                last_error = e
            except BotoCoreError as e:
                logger.warning("SES unreachable", attempt=attempt, error=str(e))
                last_error = e
            else:
                logger.info("Email sent via SES", message_id=message_id, attempt=attempt)
                return {"message_id": message_id, "status": "sent", "to_addresses": to_addresses}

            if attempt < self.max_retries:
                time.sleep(self.retry_backoff * 2 ** (attempt - 1))

        raise SESClientError(
            f"Failed to send email after {self.max_retries} attempts",
            to_addresses=to_addresses,
            last_error=str(last_error),
        ) from last_error
