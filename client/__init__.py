"""OBS WebSocket v5 client."""

from client.session import ObsClient
from client.events import EventListener
from client.config import ClientConfig, load_config
from shared.envelope import (
    AuthenticationError,
    ConnectionFailedError,
    ConnectionLostError,
    Event,
    MalformedFrameError,
    ObsWsError,
    RequestBatchResponse,
    RequestResponse,
    RequestStatus,
    TransportNotOpenError,
)
from shared.opcodes import ConnectionState, EventSubscription, RequestBatchExecutionType, RequestStatusCode

__all__ = [
    "ObsClient",
    "EventListener",
    "ClientConfig",
    "load_config",
    "AuthenticationError",
    "ConnectionFailedError",
    "ConnectionLostError",
    "Event",
    "MalformedFrameError",
    "ObsWsError",
    "RequestBatchResponse",
    "RequestResponse",
    "RequestStatus",
    "TransportNotOpenError",
    "ConnectionState",
    "EventSubscription",
    "RequestBatchExecutionType",
    "RequestStatusCode",
]
