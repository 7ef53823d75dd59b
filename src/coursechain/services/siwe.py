# src/coursechain/services/siwe.py
"""Sign-In with Ethereum (EIP-4361) verification on top of the ``siwe`` library."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from siwe.siwe import ExpiredMessage as SiweExpiredMessage
from siwe.siwe import InvalidSignature, NotYetValidMessage, SiweMessage, VerificationError

from coursechain.core.errors import (
    ExpiredMessage,
    MalformedMessage,
    MessageNotYetValid,
    SignatureMismatch,
)
from coursechain.db.time import utcnow

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
# 65 byte r || s || v signature, as produced by personal_sign.
_SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]{130}$")


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as the RFC 3339 UTC form used in SIWE messages."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_siwe_message(text: str) -> SiweMessage:
    """Parse ``text`` according to the EIP-4361 grammar.

    The address line must be EIP-55 checksummed.

    Raises:
        MalformedMessage: On any deviation from the grammar.
    """
    try:
        return SiweMessage.from_message(message=text)
    except Exception as err:
        raise MalformedMessage(f"invalid sign-in message: {type(err).__name__}") from err


def claimed_address(text: str) -> str | None:
    """Best-effort lowercase address from line two of ``text``, for audit records."""
    lines = text.split("\n", 2)
    if len(lines) >= 2 and _ADDRESS_RE.match(lines[1]):
        return lines[1].lower()
    return None


@dataclass(frozen=True)
class VerifiedMessage:
    """Outcome of a successful verification."""

    address: str
    nonce: str
    message: SiweMessage


class SignatureVerifier:
    """Validate a signed SIWE message without touching any store."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def verify(self, message: str, signature: str) -> VerifiedMessage:
        """Parse ``message``, check its validity window and recover its signer.

        Signer recovery uses EIP-191 ``personal_sign`` prefixing, which is what
        wallets apply to SIWE messages.

        Raises:
            MalformedMessage: If the message does not parse.
            SignatureMismatch: If the signature does not recover to the claimed address.
            ExpiredMessage: If the message's own expiration time has passed.
            MessageNotYetValid: If the message's Not Before lies in the future.
        """
        parsed = parse_siwe_message(message)
        if not _SIGNATURE_RE.match(signature):
            raise SignatureMismatch("signature is not a 65 byte hex string")

        try:
            parsed.verify(signature, timestamp=self._clock())
        except SiweExpiredMessage as err:
            raise ExpiredMessage("message has expired") from err
        except NotYetValidMessage as err:
            raise MessageNotYetValid("message is not valid yet") from err
        except InvalidSignature as err:
            raise SignatureMismatch("recovered address does not match message address") from err
        except VerificationError as err:
            raise MalformedMessage(f"message failed verification: {type(err).__name__}") from err
        except Exception as err:
            logger.debug("Signature recovery failed: %s", err)
            raise SignatureMismatch("signature could not be recovered") from err

        return VerifiedMessage(
            address=str(parsed.address).lower(), nonce=parsed.nonce, message=parsed
        )
