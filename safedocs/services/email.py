from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..config import settings
from .aws import boto3_client

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    to: str
    subject: str
    text_body: str
    html_body: Optional[str] = None


class EmailClient:
    def send(self, message: EmailMessage) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class SesEmailClient(EmailClient):
    def __init__(self) -> None:
        self._client = boto3_client("ses")

    def send(self, message: EmailMessage) -> None:
        try:
            destination = {"ToAddresses": [message.to]}
            body: dict[str, dict[str, str]] = {"Text": {"Data": message.text_body}}
            if message.html_body:
                body["Html"] = {"Data": message.html_body}

            self._client.send_email(
                Source=settings.email_from,
                Destination=destination,
                Message={
                    "Subject": {"Data": message.subject},
                    "Body": body,
                },
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("SES send_email failed: %s", exc)
            raise RuntimeError("Failed to send email") from exc


class ConsoleEmailClient(EmailClient):
    def send(self, message: EmailMessage) -> None:
        logger.info("Sending email (console fallback) -> %s: %s", message.to, message.subject)
        logger.debug("Email body: %s", message.text_body)


def get_email_client() -> EmailClient:
    if settings.environment == "production":
        return SesEmailClient()
    return ConsoleEmailClient()


def send_quietly(message: EmailMessage, client: EmailClient | None = None) -> bool:
    """Notification mail must never fail the request that triggered it."""
    try:
        (client or get_email_client()).send(message)
        return True
    except Exception:
        logger.warning("email_send_failed to=%s subject=%s", message.to, message.subject, exc_info=True)
        return False


# --- Message builders ----------------------------------------------------
def share_notification(
    recipient_email: str,
    recipient_name: str,
    sender_name: str,
    document_title: str,
    access_level: str,
    document_id: str,
) -> EmailMessage:
    url = f"{settings.app_url}/documents/{document_id}"
    return EmailMessage(
        to=recipient_email,
        subject=f'{sender_name} shared "{document_title}" with you',
        text_body=(
            f"Hello {recipient_name},\n\n"
            f'{sender_name} gave you {access_level} access to "{document_title}".\n\n'
            f"Open it here: {url}\n"
        ),
    )


def share_link_message(
    recipient_email: str,
    sender_name: str,
    document_title: str,
    share_url: str,
    expires_at: datetime,
    allow_download: bool,
) -> EmailMessage:
    download_line = "You can view and download it." if allow_download else "You can view it online."
    return EmailMessage(
        to=recipient_email,
        subject=f'{sender_name} sent you "{document_title}"',
        text_body=(
            f'{sender_name} shared "{document_title}" with you on SafeDocs.\n\n'
            f"{download_line}\n{share_url}\n\n"
            f"This link expires on {expires_at.strftime('%Y-%m-%d %H:%M UTC')}.\n"
        ),
    )


def access_request_message(
    owner_email: str,
    owner_name: str,
    requester_name: str,
    document_title: str,
    requested_access: str,
    note: Optional[str],
) -> EmailMessage:
    body = (
        f"Hello {owner_name},\n\n"
        f'{requester_name} requested {requested_access} access to "{document_title}".\n'
    )
    if note:
        body += f"\nMessage: {note}\n"
    body += f"\nReview pending requests: {settings.app_url}/access-requests\n"
    return EmailMessage(
        to=owner_email,
        subject=f'Access request for "{document_title}"',
        text_body=body,
    )


def access_request_response_message(
    requester_email: str,
    requester_name: str,
    document_title: str,
    status: str,
    response_message: Optional[str],
    document_id: str,
) -> EmailMessage:
    body = f'Hello {requester_name},\n\nYour request for "{document_title}" was {status}.\n'
    if response_message:
        body += f"\nResponse: {response_message}\n"
    if status == "approved":
        body += f"\nOpen it here: {settings.app_url}/documents/{document_id}\n"
    return EmailMessage(
        to=requester_email,
        subject=f'Your access request was {status}',
        text_body=body,
    )
