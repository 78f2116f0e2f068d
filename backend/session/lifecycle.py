"""
Bridge session lifecycle states.

INIT -> UPSTREAM_CONNECTING -> UPSTREAM_READY -> CLOSING -> CLOSED
INIT -> REJECTED (bridge disabled or no credential; terminal)

This is pure data owned by BridgeSession. Transitions live there.
"""
from enum import Enum


class BridgeState(str, Enum):
    """
    Lifecycle of one downstream connection and its paired upstream session.
    """
    INIT = "INIT"                                # Downstream accepted, nothing started
    UPSTREAM_CONNECTING = "UPSTREAM_CONNECTING"  # Upstream socket opening / setup sent
    UPSTREAM_READY = "UPSTREAM_READY"            # setupComplete received, audio accepted
    CLOSING = "CLOSING"                          # Either side gone, teardown in progress
    CLOSED = "CLOSED"                            # Both transports released
    REJECTED = "REJECTED"                        # Refused before any upstream attempt

    @property
    def is_terminal(self) -> bool:
        return self in (BridgeState.CLOSED, BridgeState.REJECTED)

    @property
    def is_shutting_down(self) -> bool:
        return self in (BridgeState.CLOSING, BridgeState.CLOSED, BridgeState.REJECTED)
