"""
Email delivery through the provider's HTTP API (Resend-compatible).

    from services.email_service import send_email

    message_id = send_email(
        to="parent@example.com",
        subject="Camp Nature is now open for registration",
        html="<p>...</p>",
        text="...",
        sender="PDX Camps <hello@pdxcamps.com>",
    )

Configuration:
- RESEND_API_KEY: provider API key (required)
- EMAIL_API_URL: endpoint (defaults to the Resend emails endpoint)
- EMAIL_FROM_DEFAULT: sender used when none is passed
"""
import logging
import os
from typing import List, Optional, Union

import requests

logger = logging.getLogger(__name__)

DEFAULT_EMAIL_API_URL = "https://api.resend.com/emails"
DEFAULT_SENDER = "PDX Camps <hello@pdxcamps.com>"
REQUEST_TIMEOUT_SECONDS = 15


class EmailSendError(Exception):
    """Provider rejected the message or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def send_email(to: Union[str, List[str]], subject: str, html: str, text: str = None,
               sender: str = None, api_key: str = None, http=None) -> Optional[str]:
    """
    Send one message and return the provider's message id.

    Raises:
        EmailSendError: missing API key, network error, or non-2xx response
    """
    api_key = api_key or os.getenv('RESEND_API_KEY')
    if not api_key:
        raise EmailSendError("RESEND_API_KEY is not configured")

    recipients = [to] if isinstance(to, str) else list(to)
    payload = {
        'from': sender or os.getenv('EMAIL_FROM_DEFAULT') or DEFAULT_SENDER,
        'to': recipients,
        'subject': subject,
        'html': html,
    }
    if text:
        payload['text'] = text

    http = http or requests
    url = os.getenv('EMAIL_API_URL') or DEFAULT_EMAIL_API_URL
    try:
        response = http.post(
            url,
            json=payload,
            headers={'Authorization': f'Bearer {api_key}'},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise EmailSendError(f"Email provider unreachable: {e}") from e

    if response.status_code >= 300:
        raise EmailSendError(
            f"Email provider returned {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
        )

    try:
        message_id = response.json().get('id')
    except ValueError:
        message_id = None
    logger.info(f"Email sent to {', '.join(recipients)} (id={message_id})")
    return message_id
