from typing import Dict, Optional

import resend
from flask import current_app

from .errors import UpstreamFailure


class Mailer:
    """Plain-text transactional email through Resend."""

    def __init__(self, api_key: str, sender: str):
        self.api_key = (api_key or "").strip()
        self.sender = sender

    def send(self, recipient: str, subject: str, text: str) -> Optional[str]:
        if not self.api_key:
            raise UpstreamFailure("Email delivery is not configured.")

        payload: Dict[str, object] = {
            "from": self.sender,
            "to": [recipient],
            "subject": subject,
            "text": text,
        }

        # The Resend SDK only reads a module level key.
        previous_api_key = getattr(resend, "api_key", None)
        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            raise UpstreamFailure(f"Email delivery failed: {exc}") from exc
        finally:
            resend.api_key = previous_api_key

        if not isinstance(response, dict) or not response.get("id"):
            raise UpstreamFailure(f"Email delivery failed: {response}")
        return response["id"]


def get_mailer() -> Mailer:
    return current_app.extensions["marketplace"]["mailer"]
