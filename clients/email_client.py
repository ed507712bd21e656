"""
Email gateway client for delivering one-time codes.

The gateway takes a compact JSON body and two auth headers: X-API-Key, and
X-Signature, a hex HMAC-SHA256 over "<X-Timestamp>.<body>". The timestamp
lets the gateway refuse replays of a captured request.

Connection setup is retried by the transport adapter. A request that reached
the gateway is never resent, so a code is delivered at most once per call.
"""

import hashlib
import hmac
import json
import logging
import time

import requests
from requests.adapters import HTTPAdapter
from urllib3 import Retry

logger = logging.getLogger(__name__)


class EmailGatewayError(Exception):
    """Raised when email gateway request fails."""


class EmailGatewayClient:
    """Signed OTP delivery over a pooled requests.Session."""

    def __init__(
        self,
        gateway_url: str,
        api_key: str,
        hmac_secret: str,
        timeout_seconds: float = 10,
        connect_retries: int = 2,
    ):
        """
        Raises:
            ValueError: If any credential is empty
        """
        for name, value in (("gateway_url", gateway_url), ("api_key", api_key), ("hmac_secret", hmac_secret)):
            if not value:
                raise ValueError(f"{name} is required")

        self.gateway_url = gateway_url
        self.timeout_seconds = timeout_seconds
        self._key = hmac_secret.encode("utf-8")

        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/json", "X-API-Key": api_key})
        adapter = HTTPAdapter(max_retries=Retry(total=None, connect=connect_retries, read=0, redirect=0, status=0))
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    def sign(self, timestamp: str, body: str) -> str:
        message = f"{timestamp}.{body}".encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def _post(self, payload: dict) -> dict:
        body = json.dumps(payload, separators=(",", ":"))
        timestamp = str(int(time.time()))
        headers = {"X-Timestamp": timestamp, "X-Signature": self.sign(timestamp, body)}

        try:
            response = self._session.post(
                self.gateway_url, data=body, headers=headers, timeout=self.timeout_seconds
            )
        except (requests.exceptions.RequestException, ConnectionError) as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}")

        try:
            result = response.json()
        except ValueError:
            logger.error(f"Email gateway returned non-JSON ({response.status_code}): {response.text[:200]}")
            raise EmailGatewayError("Invalid response from gateway")

        if not response.ok or not result.get("success"):
            message = result.get("message", "Unknown error")
            logger.error(f"Email gateway refused delivery ({response.status_code}): {message}")
            raise EmailGatewayError(f"Gateway error: {message}")
        return result

    def send_otp(self, email: str, otp: str, expiry_minutes: int, app_name: str = "Alt Auth") -> None:
        """
        Email a verification code.

        Args:
            email: Recipient address
            otp: The numeric code
            expiry_minutes: Lifetime quoted in the message body
            app_name: Product name used in the subject

        Raises:
            EmailGatewayError: The gateway did not accept the message
        """
        result = self._post({
            "type": "otp",
            "email": email,
            "subject": f"{app_name} verification code",
            "body": f"Your verification code is: {otp}\n\nThis code expires in {expiry_minutes} minutes.",
            "code": otp,
            "expires_in_minutes": expiry_minutes,
        })
        logger.info(f"Verification code sent to {email} (message_id={result.get('message_id', '-')})")

    def close(self) -> None:
        self._session.close()
