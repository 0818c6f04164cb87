"""Lipa na M-Pesa Online password and timestamp derivation."""
import base64
from datetime import datetime
from typing import Callable, Optional

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


class RequestSigner:
    """
    Derives the time-boxed STK push password.

    password = base64(shortcode + passkey + timestamp)

    Pure apart from reading the clock; recomputed for every request.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or datetime.now

    def timestamp(self) -> str:
        """Current time as YYYYMMDDHHmmss."""
        return self._clock().strftime(TIMESTAMP_FORMAT)

    @staticmethod
    def password(shortcode: str, passkey: str, timestamp: str) -> str:
        raw = f"{shortcode}{passkey}{timestamp}".encode("utf-8")
        return base64.b64encode(raw).decode("ascii")
