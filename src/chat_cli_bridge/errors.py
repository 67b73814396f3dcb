from __future__ import annotations


class BridgeError(Exception):
    """Base class for errors raised by the bridge core."""


class AlreadyRunningError(BridgeError):
    """The supervisor already owns a live assistant process."""


class LaunchError(BridgeError):
    """The assistant process could not be started."""


class DeliveryError(BridgeError):
    """The outbound chat transport rejected a message."""


class DeliveryRateLimitedError(DeliveryError):
    def __init__(self, message: str = "rate limited", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after
