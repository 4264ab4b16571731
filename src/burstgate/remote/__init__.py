"""Remote API collaborators."""

from .base import JobClient, RemoteCaller, RemoteRequest, RemoteResponse
from .http import HttpRemote
from .mock import MockRemote

__all__ = [
    "HttpRemote",
    "JobClient",
    "MockRemote",
    "RemoteCaller",
    "RemoteRequest",
    "RemoteResponse",
]
