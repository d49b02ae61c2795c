"""
Notifier
========
Delivery collaborator the engine hands plaintext codes to.

Transport, templates and delivery retries live behind this interface.
"""

from typing import List, Protocol, Tuple

import structlog

from .otp.identity import mask_identity
from .otp.models import OTPPurpose

logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    async def send(self, identity: str, purpose: OTPPurpose, code: str) -> bool:
        """
        Deliver a code.

        Returns:
            True if the transport accepted the message
        """
        ...


class LoggingNotifier:
    """
    Development notifier: logs that a code would be sent.

    The code itself is only logged when ``reveal_codes`` is set.
    """

    def __init__(self, reveal_codes: bool = False):
        self.reveal_codes = reveal_codes

    async def send(self, identity: str, purpose: OTPPurpose, code: str) -> bool:
        logger.info(
            "[MOCK] OTP delivery",
            identity=mask_identity(identity),
            purpose=purpose.value,
            code=code if self.reveal_codes else "******",
        )
        return True


class RecordingNotifier:
    """Keeps every delivered code in memory. Useful in tests and demos."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.sent: List[Tuple[str, OTPPurpose, str]] = []

    async def send(self, identity: str, purpose: OTPPurpose, code: str) -> bool:
        self.sent.append((identity, purpose, code))
        return self.accept

    def last_code(self, identity: str) -> str:
        for sent_identity, _, code in reversed(self.sent):
            if sent_identity == identity:
                return code
        raise LookupError(f"No code sent to {mask_identity(identity)}")
