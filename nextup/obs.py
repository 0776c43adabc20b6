"""
nextup/obs.py - Minimal OBS WebSocket v5 client

Speaks just enough of the obs-websocket protocol to drive an overlay:

    server -> Hello (op 0)         authentication challenge, if any
    client -> Identify (op 1)      rpcVersion + auth string
    server -> Identified (op 2)
    client -> Request (op 6)       {requestType, requestId, requestData}
    server -> RequestResponse (7)  matched back by requestId

A close that arrives after the handshake is reported through ``on_close``
and fails only the requests still waiting on a response. Callers can tell
"this request failed" (TransportError) apart from "the link went away"
(OverlayConnectionError).
"""

import asyncio
import base64
import hashlib
import json
import logging
import uuid
from enum import IntEnum
from typing import Any, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import OverlayConnectionError, StateError, TransportError

logger = logging.getLogger(__name__)

RPC_VERSION = 1
SUBPROTOCOL = "obsws.json"
DEFAULT_REQUEST_TIMEOUT = 10.0


class OpCode(IntEnum):
    HELLO = 0
    IDENTIFY = 1
    IDENTIFIED = 2
    REIDENTIFY = 3
    EVENT = 5
    REQUEST = 6
    REQUEST_RESPONSE = 7


def auth_response(password: str, salt: str, challenge: str) -> str:
    """obs-websocket auth: b64(sha256(b64(sha256(password + salt)) + challenge))."""
    secret = base64.b64encode(hashlib.sha256((password + salt).encode()).digest()).decode()
    return base64.b64encode(hashlib.sha256((secret + challenge).encode()).digest()).decode()


def _describe_close(code: int | None, reason: str | None) -> str:
    if reason:
        return f"{reason} ({code})" if code else reason
    if code:
        return f"Connection closed ({code})"
    return "Connection closed unexpectedly"


class ObsClient:
    """One live connection to an OBS instance. Not reusable after close."""

    def __init__(
        self,
        on_close: Callable[[str], None] | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self._on_close = on_close
        self._request_timeout = request_timeout
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._closer: asyncio.Future | None = None
        self._pending: dict[str, asyncio.Future] = {}
        self._open = False
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._open

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self, url: str, password: str | None = None) -> None:
        """Open the socket and complete the Hello/Identify handshake."""
        try:
            self._ws = await websockets.connect(url, subprotocols=[SUBPROTOCOL])
            hello = await self._expect(OpCode.HELLO)

            identify: dict[str, Any] = {"rpcVersion": RPC_VERSION, "eventSubscriptions": 0}
            challenge = hello.get("authentication")
            if challenge:
                if not password:
                    raise OverlayConnectionError("OBS requires a password but none is set")
                identify["authentication"] = auth_response(
                    password, challenge["salt"], challenge["challenge"]
                )
            await self._send(OpCode.IDENTIFY, identify)
            await self._expect(OpCode.IDENTIFIED)
        except OverlayConnectionError:
            await self._abort()
            raise
        except ConnectionClosed as e:
            await self._abort()
            frame = e.rcvd or e.sent
            raise OverlayConnectionError(
                _describe_close(frame.code if frame else None, frame.reason if frame else None)
            ) from e
        except (OSError, WebSocketException, ValueError, KeyError, TypeError) as e:
            await self._abort()
            raise OverlayConnectionError(f"Could not connect to {url}: {e}") from e
        except asyncio.CancelledError:
            # Timed out by the caller; close in the background so we don't stall it
            self._closer = asyncio.ensure_future(self._abort())
            raise

        self._open = True
        self._reader = asyncio.get_running_loop().create_task(
            self._read_loop(), name="obs-reader"
        )
        logger.debug(f"[OBS] identified with {url}")

    async def disconnect(self) -> None:
        """Close deliberately. Does not fire ``on_close``."""
        self._closing = True
        self._open = False
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
        self._fail_pending("Connection closed by client")

    async def _abort(self) -> None:
        self._closing = True
        if self._ws is not None:
            try:
                await self._ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"[OBS] error closing failed handshake: {e}")

    async def _send(self, op: OpCode, data: dict) -> None:
        await self._ws.send(json.dumps({"op": int(op), "d": data}))

    async def _expect(self, op: OpCode) -> dict:
        raw = await self._ws.recv()
        msg = json.loads(raw)
        if not isinstance(msg, dict):
            raise OverlayConnectionError(f"Malformed message during handshake: {raw!r}")
        if msg.get("op") != op:
            raise OverlayConnectionError(
                f"Unexpected message during handshake: op {msg.get('op')}, wanted {int(op)}"
            )
        data = msg.get("d") or {}
        if not isinstance(data, dict):
            raise OverlayConnectionError(f"Malformed message during handshake: {raw!r}")
        return data

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    logger.debug(f"[OBS] ignoring non-JSON frame: {raw!r}")
                    continue
                if not isinstance(msg, dict):
                    logger.debug(f"[OBS] ignoring non-object frame: {raw!r}")
                    continue
                if msg.get("op") == OpCode.REQUEST_RESPONSE:
                    data = msg.get("d") or {}
                    if not isinstance(data, dict):
                        continue
                    future = self._pending.pop(data.get("requestId"), None)
                    if future is not None and not future.done():
                        future.set_result(data)
            reason = _describe_close(self._ws.close_code, self._ws.close_reason)
        except ConnectionClosed as e:
            frame = e.rcvd or e.sent
            reason = _describe_close(frame.code if frame else None, frame.reason if frame else None)

        self._open = False
        self._fail_pending(reason)
        if not self._closing:
            logger.info(f"[OBS] connection lost: {reason}")
            if self._on_close is not None:
                self._on_close(reason)

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(OverlayConnectionError(reason))

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def call(self, request_type: str, request_data: dict | None = None) -> dict:
        """Send one request and wait for its response data."""
        if not self._open:
            raise StateError("OBS not connected")

        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send(
                OpCode.REQUEST,
                {
                    "requestType": request_type,
                    "requestId": request_id,
                    "requestData": request_data or {},
                },
            )
            response = await asyncio.wait_for(future, timeout=self._request_timeout)
        except ConnectionClosed as e:
            raise OverlayConnectionError(f"{request_type}: connection closed") from e
        except asyncio.TimeoutError as e:
            raise TransportError(f"{request_type} timed out after {self._request_timeout}s") from e
        finally:
            self._pending.pop(request_id, None)

        status = response.get("requestStatus") or {}
        if not status.get("result"):
            comment = status.get("comment") or "request failed"
            raise TransportError(f"{request_type} failed: {comment}", status=status.get("code"))
        return response.get("responseData") or {}

    async def set_text(self, input_name: str, text: str) -> None:
        await self.call("SetInputSettings", {"inputName": input_name, "inputSettings": {"text": text}})

    async def set_scene(self, scene_name: str) -> None:
        await self.call("SetCurrentProgramScene", {"sceneName": scene_name})
