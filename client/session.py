#!/usr/bin/env python3
"""
OBSWS client session

Owns the one WebSocket connection to the server and drives it through
DISCONNECTED -> CONNECTING -> CONNECTED_UNIDENTIFIED -> IDENTIFIED, with a
RECONNECTING detour after every drop while auto-reconnect is on.

Inbound frames are offered to the request correlator first (responses), then
routed by op code: Hello triggers Identify, Identified completes the
handshake, Event goes to the listeners. Anything else is ignored.
"""

from __future__ import annotations
import asyncio
from contextlib import suppress
from typing import Any, Callable, Dict, Iterable, Optional

import websockets

from client.config import ClientConfig
from client.correlator import BatchItem, RequestCorrelator
from client.events import EventCallback, EventDispatcher, EventListener
from client.transport import CloseInfo, WebSocketTransport
from shared.crypto.auth import authenticate_hello
from shared.envelope import (
    ConnectionFailedError,
    ConnectionLostError,
    Envelope,
    Event,
    Hello,
    Identified,
    MalformedFrameError,
    RequestBatchResponse,
    RequestResponse,
    TransportNotOpenError,
    create_envelope,
)
from shared.log import get_logger, log_frame
from shared.opcodes import (
    CloseCode,
    ConnectionState,
    EventSubscription,
    FATAL_CLOSE_CODES,
    OpCode,
    RequestBatchExecutionType,
)
from shared.utils import build_ws_url, is_valid_port

logger = get_logger(__name__)


TransportFactory = Callable[..., WebSocketTransport]


def _check_port(port: Optional[int]) -> None:
    if port is not None and not is_valid_port(port):
        raise ValueError(f"Invalid port: {port!r}")


class ObsClient:
    """
    Client session for one server.

    Typical usage:
        client = await ObsClient.initialize("localhost", 4455, password)
        client.add_event_listener("CurrentProgramSceneChanged", print)
        response = await client.send_request("GetVersion")
        await client.close()
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        password: Optional[str] = None,
        event_subscriptions: int = EventSubscription.ALL,
        auto_reconnect: bool = True,
        *,
        reconnect_delay: float = 1.0,
        ping_interval: Optional[float] = 15.0,
        ping_timeout: Optional[float] = 45.0,
        open_timeout: Optional[float] = 10.0,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        _check_port(port)
        self.host = host
        self.port = port
        self._password = password
        self.event_subscriptions = int(event_subscriptions)
        self.auto_reconnect = auto_reconnect
        self.reconnect_delay = reconnect_delay

        self.state = ConnectionState.DISCONNECTED
        self._connected = False
        self._identified = False
        # Set once the current connection epoch is identified or superseded
        self._ready = asyncio.Event()
        self._connect_outcome: Optional[asyncio.Future] = None
        self._connection_task: Optional[asyncio.Task] = None
        self._failure: Optional[ConnectionFailedError] = None

        self.hello: Optional[Hello] = None
        self.negotiated_rpc_version: Optional[int] = None
        self.last_error: Optional[BaseException] = None

        factory = transport_factory or WebSocketTransport
        self._transport = factory(
            self._handle_message,
            on_error=self._on_transport_error,
            ping_interval=ping_interval,
            ping_timeout=ping_timeout,
            open_timeout=open_timeout,
        )
        self._correlator = RequestCorrelator(self._transport)
        self._events = EventDispatcher()

    # ========================================
    #           CONSTRUCTION
    # ========================================

    @classmethod
    async def initialize(
        cls,
        host: Optional[str] = None,
        port: Optional[int] = None,
        password: Optional[str] = None,
        event_subscriptions: int = EventSubscription.ALL,
        auto_reconnect: bool = True,
        **options: Any,
    ) -> ObsClient:
        """Create a client, connect and wait for the handshake to finish."""
        client = cls(host, port, password, event_subscriptions, auto_reconnect, **options)
        await client.connect()
        await client.wait_for_initialization()
        return client

    @classmethod
    def from_config(cls, cfg: ClientConfig, **options: Any) -> ObsClient:
        return cls(
            cfg.host,
            cfg.port,
            cfg.password,
            cfg.event_subscriptions,
            cfg.auto_reconnect,
            reconnect_delay=cfg.reconnect_delay,
            ping_interval=cfg.ping_interval,
            ping_timeout=cfg.ping_timeout,
            open_timeout=cfg.open_timeout,
            **options,
        )

    async def __aenter__(self) -> ObsClient:
        await self.connect()
        await self.wait_for_initialization()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ========================================
    #           STATE
    # ========================================

    @property
    def url(self) -> Optional[str]:
        if not self.host or not self.port:
            return None
        return build_ws_url(self.host, self.port)

    @property
    def transport(self) -> WebSocketTransport:
        return self._transport

    def is_connected(self) -> bool:
        return self._connected

    def is_identified(self) -> bool:
        return self._identified

    async def wait_for_initialization(self) -> None:
        """
        Wait until the session is identified.

        Returns at once when already identified or when no endpoint is
        configured. Raises ConnectionFailedError if the connection gave up.
        """
        while True:
            if self._connected and self._identified:
                return
            if self._failure is not None:
                raise ConnectionFailedError(str(self._failure))
            if self.url is None:
                return
            await self._ready.wait()

    def _new_epoch(self) -> None:
        """Replace the readiness signal and wake anyone waiting on the old one."""
        previous, self._ready = self._ready, asyncio.Event()
        previous.set()

    # ========================================
    #           CONNECTION LOOP
    # ========================================

    async def connect(self) -> None:
        """
        Start connecting and return once the transport is open.

        With no endpoint configured this returns immediately and the client
        stays idle.
        """
        url = self.url
        if url is None:
            logger.debug("No endpoint configured; client stays idle")
            return

        await self._stop_connection_task()
        loop = asyncio.get_running_loop()
        self._failure = None
        outcome = loop.create_future()
        self._connect_outcome = outcome
        self._connection_task = loop.create_task(self._connection_loop(url, outcome))

        try:
            await asyncio.shield(outcome)
        except asyncio.CancelledError:
            if outcome.cancelled():
                raise ConnectionFailedError(f"Connection to {url} aborted by close()") from None
            raise

    async def _connection_loop(self, url: str, outcome: asyncio.Future) -> None:
        while True:
            self.state = ConnectionState.CONNECTING
            self._new_epoch()
            close_info: Optional[CloseInfo] = None
            try:
                try:
                    await self._transport.open(url)
                except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                    logger.error("Could not connect: %s", str(e) or type(e).__name__, extra={"endpoint": url})
                else:
                    self._connected = True
                    self.state = ConnectionState.CONNECTED_UNIDENTIFIED
                    if not outcome.done():
                        outcome.set_result(None)
                    close_info = await self._transport.receive_forever()
            except Exception as e:
                # Anything other than a network failure is fatal, even with auto-reconnect
                logger.error("Connection loop stopped: %s", str(e) or type(e).__name__,
                             exc_info=True, extra={"endpoint": url})
                self.last_error = e
                await self._transport.close()
                self._on_disconnected(None)
                self._give_up(url, outcome, e)
                return

            self._on_disconnected(close_info)

            if not self.auto_reconnect:
                self._give_up(url, outcome)
                return

            self.state = ConnectionState.RECONNECTING
            await asyncio.sleep(self.reconnect_delay)
            logger.info("Reconnecting...", extra={"endpoint": url})

    def _on_disconnected(self, close_info: Optional[CloseInfo]) -> None:
        self._connected = False
        self._identified = False
        self.negotiated_rpc_version = None
        self._new_epoch()
        self._correlator.fail_all(ConnectionLostError("Connection lost before a response arrived"))

        if close_info is not None and close_info.code in FATAL_CLOSE_CODES:
            logger.error("Server ended the session: %s (%s)",
                         CloseCode(close_info.code).name, close_info.reason or "no reason")

    def _give_up(self, url: str, outcome: asyncio.Future, cause: Optional[BaseException] = None) -> None:
        self.state = ConnectionState.DISCONNECTED
        self._failure = ConnectionFailedError(f"Could not connect to {url}")
        self._failure.__cause__ = cause
        if not outcome.done():
            outcome.set_exception(self._failure)
        self._new_epoch()

    def _on_transport_error(self, error: BaseException) -> None:
        self.last_error = error

    async def _stop_connection_task(self) -> None:
        task, self._connection_task = self._connection_task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        outcome, self._connect_outcome = self._connect_outcome, None
        if outcome is not None and not outcome.done():
            outcome.cancel()
        await self._transport.close()

    # ========================================
    #           INBOUND FRAMES
    # ========================================

    async def _handle_message(self, raw: str) -> None:
        try:
            envelope = Envelope.from_json(raw)
        except MalformedFrameError as e:
            logger.debug("Ignoring malformed frame: %s", e)
            return

        log_frame(logger, "debug", "Received frame", envelope=envelope.to_dict())

        if self._correlator.handle_frame(envelope):
            return

        op = envelope.opcode
        if op is OpCode.HELLO:
            await self._on_hello(Hello.from_dict(envelope.d))
        elif op is OpCode.IDENTIFIED:
            self._on_identified(Identified.from_dict(envelope.d))
        elif op is OpCode.EVENT:
            self._events.dispatch(Event.from_dict(envelope.d))

    async def _on_hello(self, hello: Hello) -> None:
        self.hello = hello
        authentication = None
        if self._password:
            if hello.requires_authentication:
                authentication = authenticate_hello(self._password, hello)
            else:
                logger.warning("Password configured but the server does not require authentication")
        elif hello.requires_authentication:
            logger.warning("Server requires authentication but no password is configured")

        identify = create_envelope(OpCode.IDENTIFY, {
            "rpcVersion": hello.rpc_version,
            "authentication": authentication,
            "eventSubscriptions": self.event_subscriptions,
        })
        await self._transport.send(identify.to_json())

    def _on_identified(self, identified: Identified) -> None:
        self._identified = True
        self.state = ConnectionState.IDENTIFIED
        self.negotiated_rpc_version = identified.negotiated_rpc_version
        self._ready.set()
        logger.info("Authenticated successfully (rpc version %s)", identified.negotiated_rpc_version)

    # ========================================
    #           REQUESTS
    # ========================================

    async def send_request(self, request_type: str, request_data: Optional[Dict[str, Any]] = None) -> RequestResponse:
        """
        Send one request and wait for its response.

        A failed request still returns a response; check ``response.ok``.
        Raises TransportNotOpenError when not connected and ConnectionLostError
        if the connection drops before the response arrives.
        """
        return await self._correlator.send_request(request_type, request_data)

    async def send_batch_request(
        self,
        requests: Iterable[BatchItem],
        halt_on_failure: bool = False,
        execution_type: int = RequestBatchExecutionType.SERIAL_REALTIME,
    ) -> RequestBatchResponse:
        return await self._correlator.send_batch_request(requests, halt_on_failure, execution_type)

    async def reidentify(self, event_subscriptions: int) -> None:
        """Change the event subscriptions of the live session (op 3)."""
        if not self._transport.is_open:
            raise TransportNotOpenError("WebSocket is not open. Cannot reidentify.")
        self.event_subscriptions = int(event_subscriptions)
        envelope = create_envelope(OpCode.REIDENTIFY, {"eventSubscriptions": self.event_subscriptions})
        if not await self._transport.send(envelope.to_json()):
            raise TransportNotOpenError("WebSocket closed before Reidentify was sent.")

    # ========================================
    #           EVENTS
    # ========================================

    def add_event_listener(self, event_type: Optional[str], callback: EventCallback) -> EventListener:
        """Register ``callback`` for ``event_type``, or for every event when it is None."""
        return self._events.add_event_listener(event_type, callback)

    def remove_event_listener(self, listener: EventListener) -> None:
        self._events.remove_event_listener(listener)

    def on(self, event_type: Optional[str] = None) -> Callable[[EventCallback], EventCallback]:
        """Decorator form of add_event_listener."""
        def decorator(callback: EventCallback) -> EventCallback:
            self.add_event_listener(event_type, callback)
            return callback
        return decorator

    # ========================================
    #           LIFECYCLE
    # ========================================

    async def close(self) -> None:
        """Disconnect and forget endpoint, password and listeners. Safe to call repeatedly."""
        was_active = self.url is not None or self._connected
        await self._stop_connection_task()
        self._correlator.fail_all(ConnectionLostError("Client closed"))
        self._events.clear()

        self.host = None
        self.port = None
        self._password = None
        self._connected = False
        self._identified = False
        self._failure = None
        self.hello = None
        self.negotiated_rpc_version = None
        self.state = ConnectionState.DISCONNECTED
        self._new_epoch()
        if was_active:
            logger.info("Connection closed")

    async def redirect(self, host: str, port: int, password: Optional[str] = None) -> None:
        """Drop the current session and connect to another endpoint with the same client object."""
        _check_port(port)
        await self.close()
        self.host = host
        self.port = port
        self._password = password
        await self.connect()
