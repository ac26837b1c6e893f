from .client import RemoteIndexClient
from .homeserver import HomeserverWriter, HttpHomeserverWriter
from .long_poll import long_poll
from .results import RemoteNotFound, RemoteResult, RemoteSuccess, RemoteTimeout

__all__ = [
    "HomeserverWriter",
    "HttpHomeserverWriter",
    "RemoteIndexClient",
    "RemoteNotFound",
    "RemoteResult",
    "RemoteSuccess",
    "RemoteTimeout",
    "long_poll",
]
