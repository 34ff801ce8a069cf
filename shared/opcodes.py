from __future__ import annotations

from enum import Enum, IntEnum, IntFlag
from typing import Set


class OpCode(IntEnum):
    """Frame operation codes carried in the ``op`` field."""

    # Handshake
    HELLO = 0                       # server -> client, first frame on every connection
    IDENTIFY = 1                    # client -> server, answer to HELLO
    IDENTIFIED = 2                  # server -> client, session accepted
    REIDENTIFY = 3                  # client -> server, change session parameters

    # Events
    EVENT = 5                       # server -> client

    # Requests
    REQUEST = 6                     # client -> server
    REQUEST_RESPONSE = 7            # server -> client
    REQUEST_BATCH = 8               # client -> server
    REQUEST_BATCH_RESPONSE = 9      # server -> client

    @classmethod
    def is_valid(cls, value: int) -> bool:
        """Check if integer is a known op code."""
        try:
            cls(value)
            return True
        except ValueError:
            return False


# Op codes carrying a requestId the correlator resolves
RESPONSE_OPS: Set[OpCode] = {
    OpCode.REQUEST_RESPONSE,
    OpCode.REQUEST_BATCH_RESPONSE,
}


class EventSubscription(IntFlag):
    """Event categories requested in Identify/Reidentify."""

    NONE = 0

    GENERAL = 1 << 0
    CONFIG = 1 << 1
    SCENES = 1 << 2
    INPUTS = 1 << 3
    TRANSITIONS = 1 << 4
    FILTERS = 1 << 5
    OUTPUTS = 1 << 6
    SCENE_ITEMS = 1 << 7
    MEDIA_INPUTS = 1 << 8
    VENDORS = 1 << 9
    UI = 1 << 10

    # All non-high-volume categories
    ALL = (GENERAL | CONFIG | SCENES | INPUTS | TRANSITIONS | FILTERS
           | OUTPUTS | SCENE_ITEMS | MEDIA_INPUTS | VENDORS | UI)

    # High-volume events, opt-in only
    INPUT_VOLUME_METERS = 1 << 16
    INPUT_ACTIVE_STATE_CHANGED = 1 << 17
    INPUT_SHOW_STATE_CHANGED = 1 << 18
    SCENE_ITEM_TRANSFORM_CHANGED = 1 << 19


HIGH_VOLUME_SUBSCRIPTIONS = (
    EventSubscription.INPUT_VOLUME_METERS
    | EventSubscription.INPUT_ACTIVE_STATE_CHANGED
    | EventSubscription.INPUT_SHOW_STATE_CHANGED
    | EventSubscription.SCENE_ITEM_TRANSFORM_CHANGED
)


class RequestBatchExecutionType(IntEnum):
    """Server-side execution mode of a request batch."""

    NONE = -1
    SERIAL_REALTIME = 0
    SERIAL_FRAME = 1
    PARALLEL = 2


class RequestStatusCode(IntEnum):
    """Common ``requestStatus.code`` values. Servers may send others."""

    UNKNOWN = 0
    NO_ERROR = 10
    SUCCESS = 100
    MISSING_REQUEST_TYPE = 203
    UNKNOWN_REQUEST_TYPE = 204
    GENERIC_ERROR = 205
    UNSUPPORTED_REQUEST_BATCH_EXECUTION_TYPE = 206
    NOT_READY = 207
    MISSING_REQUEST_FIELD = 300
    MISSING_REQUEST_DATA = 301
    INVALID_REQUEST_FIELD = 400
    RESOURCE_NOT_FOUND = 600
    REQUEST_PROCESSING_FAILED = 702


class CloseCode(IntEnum):
    """WebSocket close codes the server uses to explain a disconnect."""

    DONT_CLOSE = 0
    UNKNOWN_REASON = 4000
    MESSAGE_DECODE_ERROR = 4002
    MISSING_DATA_FIELD = 4003
    INVALID_DATA_FIELD_TYPE = 4004
    INVALID_DATA_FIELD_VALUE = 4005
    UNKNOWN_OP_CODE = 4006
    NOT_IDENTIFIED = 4007
    ALREADY_IDENTIFIED = 4008
    AUTHENTICATION_FAILED = 4009
    UNSUPPORTED_RPC_VERSION = 4010
    SESSION_INVALIDATED = 4011
    UNSUPPORTED_FEATURE = 4012


# Close codes after which reconnecting with the same settings cannot succeed
FATAL_CLOSE_CODES: Set[CloseCode] = {
    CloseCode.AUTHENTICATION_FAILED,
    CloseCode.UNSUPPORTED_RPC_VERSION,
    CloseCode.SESSION_INVALIDATED,
}


class ConnectionState(str, Enum):
    """Session lifecycle states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED_UNIDENTIFIED = "connected_unidentified"
    IDENTIFIED = "identified"
    RECONNECTING = "reconnecting"
