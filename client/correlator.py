from __future__ import annotations
import asyncio
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple, Union

from shared.envelope import (
    Envelope,
    RequestBatchResponse,
    RequestResponse,
    TransportNotOpenError,
    create_envelope,
)
from shared.log import get_logger
from shared.opcodes import OpCode, RequestBatchExecutionType, RESPONSE_OPS

if TYPE_CHECKING:
    from client.transport import WebSocketTransport

logger = get_logger(__name__)


BatchItem = Union[str, Tuple[str, Optional[Dict[str, Any]]], Dict[str, Any]]


@dataclass
class PendingRequest:
    request_id: str
    response_op: OpCode
    future: asyncio.Future


class RequestCorrelator:
    """
    Matches responses to the requests that asked for them.

    Every request gets a fresh UUIDv4 ``requestId``; inbound op 7/9 frames are
    looked up by that id, resolved once and forgotten. Nothing is registered
    unless the frame actually goes out.
    """

    def __init__(self, transport: WebSocketTransport) -> None:
        self.transport = transport
        self._pending: Dict[str, PendingRequest] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def send_request(self, request_type: str, request_data: Optional[Dict[str, Any]] = None) -> RequestResponse:
        """Send a single request (op 6) and wait for its response (op 7)."""
        payload = {"requestType": request_type, "requestData": request_data}
        d = await self._send(OpCode.REQUEST, OpCode.REQUEST_RESPONSE, payload)
        return RequestResponse.from_dict(d)

    async def send_batch_request(
        self,
        requests: Iterable[BatchItem],
        halt_on_failure: bool = False,
        execution_type: int = RequestBatchExecutionType.SERIAL_REALTIME,
    ) -> RequestBatchResponse:
        """
        Send a request batch (op 8) and wait for its response (op 9).

        ``halt_on_failure`` and ``execution_type`` are passed to the server as-is.
        """
        payload = {
            "requests": normalize_batch(requests),
            "haltOnFailure": halt_on_failure,
            "executionType": int(execution_type),
        }
        d = await self._send(OpCode.REQUEST_BATCH, OpCode.REQUEST_BATCH_RESPONSE, payload)
        return RequestBatchResponse.from_dict(d)

    async def _send(self, op: OpCode, response_op: OpCode, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.transport.is_open:
            raise TransportNotOpenError("WebSocket is not open. Cannot send request.")

        request_id = str(uuid.uuid4())
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingRequest(request_id, response_op, future)
        envelope = create_envelope(op, {"requestId": request_id, **payload})
        try:
            if not await self.transport.send(envelope.to_json()):
                raise TransportNotOpenError("WebSocket closed before the request was sent.")
            logger.debug("Sent %s", op.name, extra={"request_id": request_id, "op": int(op)})
            return await future
        finally:
            # Covers resolution, send failure and caller cancellation alike
            self._pending.pop(request_id, None)

    def handle_frame(self, envelope: Envelope) -> bool:
        """Resolve the pending request this frame answers. Returns True if it was consumed."""
        if envelope.op not in RESPONSE_OPS:
            return False

        request_id = envelope.d.get("requestId")
        pending = self._pending.get(request_id) if isinstance(request_id, str) else None
        if pending is None:
            logger.debug("No pending request for response", extra={"request_id": request_id, "op": envelope.op})
            return False
        if pending.response_op != envelope.op:
            logger.warning("Response op does not match request kind", extra={"request_id": request_id, "op": envelope.op})
            return False

        del self._pending[request_id]
        if not pending.future.done():
            pending.future.set_result(envelope.d)
        return True

    def fail_all(self, error: Exception) -> int:
        """Reject every pending request with ``error``. Returns how many were rejected."""
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(error)
        if pending:
            logger.warning("Rejected %d pending request(s): %s", len(pending), error)
        return len(pending)


def normalize_batch(requests: Iterable[BatchItem]) -> List[Dict[str, Any]]:
    """
    Accept request types, ``(type, data)`` tuples or ready-made dicts and
    return the list of ``{requestType, requestData?}`` dicts sent on the wire.
    """
    result: List[Dict[str, Any]] = []
    for item in requests:
        if isinstance(item, str):
            entry: Dict[str, Any] = {"requestType": item}
        elif isinstance(item, tuple):
            request_type, request_data = item
            entry = {"requestType": request_type}
            if request_data is not None:
                entry["requestData"] = request_data
        elif isinstance(item, dict):
            if not isinstance(item.get("requestType"), str):
                raise ValueError(f"Batch entry lacks a requestType: {item!r}")
            entry = {k: v for k, v in item.items() if v is not None}
        else:
            raise TypeError(f"Unsupported batch entry: {item!r}")
        result.append(entry)
    return result
