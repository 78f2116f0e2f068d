"""
Upstream session contract.

This module defines the *interface only*. The bridge talks to whatever
implements it; tests supply in-memory fakes.

Key invariants:
- One instance owns exactly one upstream connection for its lifetime.
  There is no reconnect; a closed instance stays closed.
- Inbound frames, open, close and error are delivered through async
  callbacks supplied at construction. The adapter never touches the
  downstream socket and makes no lifecycle decisions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

OnOpen = Callable[[], Awaitable[None]]
OnMessage = Callable[[dict[str, Any]], Awaitable[None]]
OnClose = Callable[[int, str], Awaitable[None]]
OnError = Callable[[BaseException], Awaitable[None]]


class UpstreamNotOpen(Exception):
    """Raised by send() when the upstream socket is not (or no longer) open."""


class UpstreamSession(ABC):
    """
    Abstract upstream speech-model session.

    Implementations are responsible for:
    - Connecting with the credential attached
    - Sending the session setup frame exactly once, right after open
    - Parsing inbound frames and dropping unparseable ones locally
    - Reporting close (code, reason) and transport errors

    Non-responsibilities:
    - No retry policy
    - No protocol translation for the downstream side
    """

    @abstractmethod
    async def open(self) -> None:
        """
        Begin connecting. Returns without waiting for the socket.

        on_open fires after the setup frame has been sent.
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the transport is open and send() may be used."""
        raise NotImplementedError

    @abstractmethod
    async def send(self, frame: dict[str, Any]) -> None:
        """
        Serialize and send one frame.

        Raises:
            UpstreamNotOpen if the transport is not open.
        """
        raise NotImplementedError

    @abstractmethod
    async def close(self, code: int, reason: str) -> None:
        """
        Close the session from our side.

        Closes an open socket with (code, reason), or abandons a pending
        connect. Idempotent. Does not fire on_close.
        """
        raise NotImplementedError
