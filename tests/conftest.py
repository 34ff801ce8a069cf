import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from client.transport import CloseInfo


HELLO = {
    "obsStudioVersion": "30.2.0",
    "obsWebSocketVersion": "5.5.0",
    "rpcVersion": 1,
}


class FakeTransport:
    """
    In-memory stand-in for WebSocketTransport.

    Frames pushed with ``push`` are delivered to the session in order; frames
    the session sends are decoded into ``sent``. With ``hello`` set the fake
    greets every new connection, and with ``auto_identify`` it answers every
    Identify with Identified.
    """

    def __init__(self, on_message, *, on_open=None, on_close=None, on_error=None, **_: Any) -> None:
        self.on_message = on_message
        self.on_open = on_open
        self.on_close = on_close
        self.on_error = on_error
        self.is_open = False
        self.sent: List[Dict[str, Any]] = []
        self.opened_urls: List[str] = []
        self.refuse = 0
        self.open_error: Optional[BaseException] = None
        self.hello: Optional[Dict[str, Any]] = dict(HELLO)
        self.auto_identify = True
        self._inbox: Optional[asyncio.Queue] = None
        self._sent_event = asyncio.Event()

    async def open(self, url: str) -> None:
        self.opened_urls.append(url)
        if self.open_error is not None:
            raise self.open_error
        if self.refuse:
            self.refuse -= 1
            error = ConnectionRefusedError(f"refused {url}")
            if self.on_error:
                self.on_error(error)
            raise error
        self._inbox = asyncio.Queue()
        self.is_open = True
        if self.on_open:
            self.on_open()
        if self.hello is not None:
            self.push(0, self.hello)

    async def receive_forever(self) -> CloseInfo:
        assert self._inbox is not None
        inbox = self._inbox
        while True:
            item = await inbox.get()
            if isinstance(item, CloseInfo):
                break
            await self.on_message(item)
        self.is_open = False
        if self.on_close:
            self.on_close(item)
        return item

    async def send(self, text: str) -> bool:
        if not self.is_open:
            return False
        frame = json.loads(text)
        self.sent.append(frame)
        self._sent_event.set()
        if frame["op"] == 1 and self.auto_identify:
            self.push(2, {"negotiatedRpcVersion": frame["d"]["rpcVersion"]})
        return True

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.is_open:
            self.is_open = False
            assert self._inbox is not None
            self._inbox.put_nowait(CloseInfo(code, reason))

    # ---- test helpers ----

    def push(self, op: int, d: Dict[str, Any]) -> None:
        self.push_raw(json.dumps({"op": op, "d": d}))

    def push_raw(self, text: str) -> None:
        assert self._inbox is not None
        self._inbox.put_nowait(text)

    def drop(self, code: int = 1006, reason: str = "abnormal closure") -> None:
        """Simulate the server going away."""
        assert self._inbox is not None
        self.is_open = False
        self._inbox.put_nowait(CloseInfo(code, reason))

    def sent_ops(self, op: int) -> List[Dict[str, Any]]:
        return [f["d"] for f in self.sent if f["op"] == op]

    async def wait_sent(self, op: int, count: int = 1, timeout: float = 1.0) -> List[Dict[str, Any]]:
        async def _wait() -> List[Dict[str, Any]]:
            while len(self.sent_ops(op)) < count:
                self._sent_event.clear()
                await self._sent_event.wait()
            return self.sent_ops(op)
        return await asyncio.wait_for(_wait(), timeout)


@pytest.fixture
def fake_transport_cls():
    return FakeTransport


@pytest.fixture
def make_client():
    """Build an ObsClient wired to a FakeTransport."""
    from client.session import ObsClient

    def _make(host: Optional[str] = "localhost", port: Optional[int] = 4455, **kwargs: Any) -> ObsClient:
        kwargs.setdefault("reconnect_delay", 0.01)
        return ObsClient(host, port, transport_factory=FakeTransport, **kwargs)

    return _make
