"""Error taxonomy shared by the controller and viewer sides."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by bimbridge."""


class NotFoundError(BridgeError):
    """A named query, model or element does not exist."""


class RequestTimeoutError(BridgeError):
    """No correlated reply arrived within the request timeout."""


class NoPeerConnectedError(BridgeError):
    """There is no connected peer on the channel to send to."""


class MalformedInputError(BridgeError):
    """Input does not satisfy a required structural contract."""


class PartialFailureError(BridgeError):
    """A batch or element failed while the overall operation continues."""


class RequestPendingError(BridgeError):
    """A correlated request is already in flight on this channel."""
