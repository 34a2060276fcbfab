"""Duplex channels and the request correlator."""

from bimbridge.channel.base import Channel
from bimbridge.channel.correlator import Correlator, RequestState
from bimbridge.channel.local import LocalEndpoint, LocalLink

__all__ = [
    "Channel",
    "Correlator",
    "LocalEndpoint",
    "LocalLink",
    "RequestState",
]
