from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import json

from shared.opcodes import OpCode


class ObsWsError(Exception):
    """Base class for client errors."""
    pass
class MalformedFrameError(ObsWsError):
    """Inbound text is not a valid ``{op, d}`` frame."""
    pass
class TransportNotOpenError(ObsWsError):
    """A frame was about to be sent while the transport is not open."""
    pass
class ConnectionFailedError(ObsWsError):
    """The connection closed or failed to open and auto-reconnect is off."""
    pass
class ConnectionLostError(ObsWsError):
    """A pending request was abandoned because the connection went away."""
    pass
class AuthenticationError(ObsWsError):
    """Authentication material is missing or unusable."""
    pass


@dataclass
class Envelope:
    """
    Every frame on the wire has the shape:
    {
    "op": INT (see OpCode),
    "d":  { ... }
    }

    Unknown op codes are still parsed; routing decides what to do with them.
    """
    op: int                 # Operation code
    d: Dict[str, Any]       # Op-specific payload

    @classmethod
    def from_json(cls, json_str: str) -> 'Envelope':
        """Parse JSON string into Envelope, validating structure"""
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise MalformedFrameError(f"Invalid JSON: {e}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> 'Envelope':
        """Create Envelope from dictionary, validating required fields"""
        if not isinstance(data, dict):
            raise MalformedFrameError("Frame must be a JSON object")

        missing = {'op', 'd'} - set(data.keys())
        if missing:
            raise MalformedFrameError(f"Missing required fields: {missing}")

        # bool is an int subclass; reject it explicitly
        if not isinstance(data['op'], int) or isinstance(data['op'], bool):
            raise MalformedFrameError("'op' must be an integer")
        if not isinstance(data['d'], dict):
            raise MalformedFrameError("'d' must be an object")

        return cls(op=data['op'], d=data['d'])

    @property
    def opcode(self) -> Optional[OpCode]:
        """The OpCode for this frame, or None for op codes this client does not know."""
        return OpCode(self.op) if OpCode.is_valid(self.op) else None

    def to_dict(self) -> Dict[str, Any]:
        return {'op': int(self.op), 'd': self.d}

    def to_json(self) -> str:
        """Convert Envelope to JSON string"""
        return json.dumps(self.to_dict(), separators=(',', ':'))


def create_envelope(op: OpCode, data: Dict[str, Any]) -> Envelope:
    """Helper to build an outbound frame, dropping payload keys whose value is None"""
    return Envelope(op=int(op), d={k: v for k, v in data.items() if v is not None})


# ========================================
#           TYPED PAYLOAD VIEWS
# ========================================
"""
Thin read-only views over inbound payloads. The raw dict is kept on each view;
nothing beyond the fields the session needs is interpreted.
"""

@dataclass
class Hello:
    rpc_version: int
    obs_studio_version: Optional[str] = None
    obs_websocket_version: Optional[str] = None
    challenge: Optional[str] = None
    salt: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def requires_authentication(self) -> bool:
        return self.challenge is not None and self.salt is not None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Hello':
        auth = d.get('authentication')
        if not isinstance(auth, dict):
            auth = {}
        return cls(
            rpc_version=d.get('rpcVersion', 1),
            obs_studio_version=d.get('obsStudioVersion'),
            obs_websocket_version=d.get('obsWebSocketVersion'),
            challenge=auth.get('challenge'),
            salt=auth.get('salt'),
            raw=d,
        )


@dataclass
class Identified:
    negotiated_rpc_version: Optional[int]
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Identified':
        return cls(negotiated_rpc_version=d.get('negotiatedRpcVersion'), raw=d)


@dataclass
class Event:
    event_type: str
    event_intent: Optional[int] = None
    event_data: Any = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Event':
        return cls(
            event_type=d.get('eventType', ''),
            event_intent=d.get('eventIntent'),
            event_data=d.get('eventData'),
        )


@dataclass
class RequestStatus:
    result: bool
    code: int
    comment: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Any) -> 'RequestStatus':
        if not isinstance(d, dict):
            d = {}
        return cls(result=bool(d.get('result', False)), code=d.get('code', 0), comment=d.get('comment'))


@dataclass
class RequestResponse:
    """
    Answer to a single request. A failed request (``request_status.result`` is
    False) is still a response; callers check ``ok`` rather than catching.
    """
    request_type: str
    request_id: Optional[str]
    request_status: RequestStatus
    response_data: Any = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def ok(self) -> bool:
        return self.request_status.result

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'RequestResponse':
        return cls(
            request_type=d.get('requestType', ''),
            request_id=d.get('requestId'),
            request_status=RequestStatus.from_dict(d.get('requestStatus')),
            response_data=d.get('responseData'),
            raw=d,
        )


@dataclass
class RequestBatchResponse:
    request_id: str
    results: List[RequestResponse]
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'RequestBatchResponse':
        results = d.get('results') or []
        return cls(
            request_id=d.get('requestId', ''),
            results=[RequestResponse.from_dict(r) for r in results if isinstance(r, dict)],
            raw=d,
        )
