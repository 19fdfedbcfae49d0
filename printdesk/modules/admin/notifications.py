"""
OTP Delivery
============

Notification collaborators handed the plain one-time code.
Provider is selected via OTP_PROVIDER config ('log' or 'resend').

Delivery is best-effort: a notifier raises NotificationError on failure and
the gate reports it without touching the issued code.
"""

import logging

import requests

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class NotificationError(Exception):
    """Raised when a verification code could not be delivered"""


class LogOtpNotifier:
    """Writes the code to the application log (development / console setups)"""

    def send_otp(self, destination, code):
        logger.info(f"Admin verification code for {destination}: {code}")


class ResendOtpNotifier:
    """Emails the code through the Resend HTTP API"""

    def __init__(self, api_key, sender_email, brand_name='Micro UV Printers', timeout=15):
        self.api_key = api_key
        self.sender_email = sender_email
        self.brand_name = brand_name
        self.timeout = timeout

    def _render(self, code):
        subject = f"{self.brand_name} admin verification code"
        text = (
            f"Your admin portal verification code is {code}.\n\n"
            "If you did not try to sign in, you can ignore this email."
        )
        html = f"""
        <div style="font-family: Helvetica, sans-serif; max-width: 480px; margin: 0 auto;">
            <h2>{self.brand_name} Admin Portal</h2>
            <p>Your verification code is:</p>
            <p style="font-size: 28px; letter-spacing: 6px; font-weight: bold;">{code}</p>
            <p style="color: #666666;">If you did not try to sign in, you can ignore this email.</p>
        </div>
        """
        return subject, text, html

    def send_otp(self, destination, code):
        if not self.api_key:
            raise NotificationError("RESEND_API_KEY not configured - cannot email verification code")

        subject, text, html = self._render(code)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "from": f"{self.brand_name} <{self.sender_email}>",
            "to": [destination],
            "subject": subject,
            "text": text,
            "html": html,
        }

        try:
            resp = requests.post(RESEND_API_URL, json=payload, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to email verification code to {destination}: {e}")
            raise NotificationError(str(e)) from e

        logger.info(f"Verification code emailed to {destination} (status {resp.status_code})")


def build_notifier(provider, api_key=None, sender_email=None, brand_name=None):
    """Notifier for an OTP_PROVIDER value; anything unknown falls back to logging."""
    provider = (provider or 'log').lower()
    if provider == 'resend':
        return ResendOtpNotifier(api_key, sender_email, brand_name or 'Micro UV Printers')
    if provider != 'log':
        logger.warning(f"Unknown OTP_PROVIDER '{provider}', codes will be logged instead")
    return LogOtpNotifier()
