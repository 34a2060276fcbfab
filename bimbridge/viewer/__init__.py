"""Viewer side: element index, session state and command dispatch."""

from bimbridge.viewer.dispatcher import ViewerDispatcher
from bimbridge.viewer.index import ElementIndex
from bimbridge.viewer.session import ViewerSession

__all__ = ["ElementIndex", "ViewerDispatcher", "ViewerSession"]
