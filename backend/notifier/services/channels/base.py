"""Contract shared by every channel sender."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class SendResult:
    """Outcome of one send. Expected failures are results, never exceptions."""

    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    provider_message_id: Optional[str] = None
    provider_response: Optional[dict[str, Any]] = None


def failure(error_code: str, error: str, *, provider_response: Optional[dict[str, Any]] = None) -> SendResult:
    return SendResult(success=False, error=error, error_code=error_code, provider_response=provider_response)


class ChannelSender(abc.ABC):
    """One outbound channel (email, whatsapp, ...)."""

    channel: str = "base"

    @abc.abstractmethod
    def send(self, recipient: str, content: dict[str, Any], *, tenant_id: str) -> SendResult:
        """Deliver rendered ``content`` to ``recipient`` for ``tenant_id``."""


def redact_recipient(value: str) -> str:
    if not value:
        return ""
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:1]}***@{domain}"
    # Keep last 3 digits for operator traceability; mask the rest.
    tail = value[-3:] if len(value) >= 3 else value
    return f"***{tail}"
