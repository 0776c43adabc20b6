"""
tests/test_obs.py - OBS WebSocket v5 wire client against a local fake server.

The fake speaks just enough obs-websocket: Hello / Identify / Identified,
then answers requests. A few request types are wired to misbehave.
"""

import asyncio
import json

import pytest
import websockets
from websockets.exceptions import ConnectionClosed

from nextup.errors import OverlayConnectionError, StateError, TransportError
from nextup.obs import SUBPROTOCOL, ObsClient, OpCode, auth_response

SALT = "lM1GncleQOaCu9lT1yeUZhFYnqhsLLP1G5lAGo3ixaI="
CHALLENGE = "+IxH4CnCiqpX1rM9scsNynZzbOe4KhDeYcTNS3PDaeY="


class FakeObsServer:
    def __init__(self, password: str | None = None, hello_frame: str | None = None):
        self.password = password
        self.hello_frame = hello_frame
        self.requests: list[dict] = []
        self.identify: dict | None = None

    async def handler(self, ws):
        try:
            if self.hello_frame is not None:
                await ws.send(self.hello_frame)
                await ws.wait_closed()
                return
            hello = {"obsWebSocketVersion": "5.0.0", "rpcVersion": 1}
            if self.password:
                hello["authentication"] = {"salt": SALT, "challenge": CHALLENGE}
            await ws.send(json.dumps({"op": OpCode.HELLO, "d": hello}))

            msg = json.loads(await ws.recv())
            self.identify = msg["d"]
            if self.password:
                expected = auth_response(self.password, SALT, CHALLENGE)
                if self.identify.get("authentication") != expected:
                    await ws.close(4009, "Authentication failed")
                    return
            await ws.send(json.dumps({"op": OpCode.IDENTIFIED, "d": {"negotiatedRpcVersion": 1}}))

            async for raw in ws:
                req = json.loads(raw)["d"]
                self.requests.append(req)
                kind = req["requestType"]
                if kind == "Ignore":
                    continue
                if kind == "Noisy":
                    await ws.send("[]")
                    await ws.send(json.dumps({"op": OpCode.REQUEST_RESPONSE, "d": []}))
                if kind == "Hangup":
                    await ws.close(1011, "OBS is shutting down")
                    return
                ok = not (kind == "SetCurrentProgramScene" and req["requestData"]["sceneName"] == "Missing")
                status = {"result": ok, "code": 100 if ok else 600}
                if not ok:
                    status["comment"] = "No source was found by the name of `Missing`."
                await ws.send(json.dumps({
                    "op": OpCode.REQUEST_RESPONSE,
                    "d": {
                        "requestType": kind,
                        "requestId": req["requestId"],
                        "requestStatus": status,
                    },
                }))
        except ConnectionClosed:
            pass


def _serve(scenario, password=None, hello_frame=None):
    fake = FakeObsServer(password, hello_frame)

    async def run():
        server = await websockets.serve(fake.handler, "127.0.0.1", 0, subprotocols=[SUBPROTOCOL])
        port = server.sockets[0].getsockname()[1]
        try:
            return await scenario(f"ws://127.0.0.1:{port}")
        finally:
            server.close()
            await server.wait_closed()

    return fake, asyncio.run(run())


class TestAuth:
    def test_known_vector(self):
        # Example from the obs-websocket protocol docs
        assert auth_response("supersecretpassword", SALT, CHALLENGE) == (
            "1Ct943GAT+6YQUUX47Ia/ncufilbe6+oD6lY+5kaCu4="
        )


class TestHandshake:
    def test_no_auth(self):
        async def scenario(url):
            client = ObsClient()
            await client.connect(url)
            connected = client.connected
            await client.disconnect()
            return connected

        fake, connected = _serve(scenario)
        assert connected
        assert fake.identify["rpcVersion"] == 1
        assert "authentication" not in fake.identify

    def test_with_password(self):
        async def scenario(url):
            client = ObsClient()
            await client.connect(url, "hunter2")
            await client.disconnect()

        fake, _ = _serve(scenario, password="hunter2")
        assert fake.identify["authentication"] == auth_response("hunter2", SALT, CHALLENGE)

    def test_wrong_password(self):
        async def scenario(url):
            with pytest.raises(OverlayConnectionError) as exc:
                await ObsClient().connect(url, "wrong")
            return str(exc.value)

        _, message = _serve(scenario, password="hunter2")
        assert "Authentication failed" in message

    def test_missing_password(self):
        async def scenario(url):
            with pytest.raises(OverlayConnectionError) as exc:
                await ObsClient().connect(url)
            return str(exc.value)

        _, message = _serve(scenario, password="hunter2")
        assert "password" in message

    def test_nothing_listening(self):
        async def scenario(url):
            return url

        _, url = _serve(scenario)
        with pytest.raises(OverlayConnectionError) as exc:
            asyncio.run(ObsClient().connect(url))
        assert "Could not connect" in str(exc.value)

    def test_non_object_hello(self):
        async def scenario(url):
            client = ObsClient()
            with pytest.raises(OverlayConnectionError) as exc:
                await client.connect(url)
            return client, str(exc.value)

        _, (client, message) = _serve(scenario, hello_frame="[]")
        assert "Malformed message" in message
        assert not client.connected


class TestRequests:
    def test_set_text_and_scene(self):
        async def scenario(url):
            client = ObsClient()
            await client.connect(url)
            await client.set_text("Player1Name", "Alice")
            await client.set_scene("Arena 1")
            await client.disconnect()

        fake, _ = _serve(scenario)
        assert fake.requests[0]["requestType"] == "SetInputSettings"
        assert fake.requests[0]["requestData"] == {
            "inputName": "Player1Name",
            "inputSettings": {"text": "Alice"},
        }
        assert fake.requests[1]["requestData"] == {"sceneName": "Arena 1"}

    def test_failed_request_status(self):
        async def scenario(url):
            client = ObsClient()
            await client.connect(url)
            try:
                with pytest.raises(TransportError) as exc:
                    await client.set_scene("Missing")
                return exc.value
            finally:
                await client.disconnect()

        _, error = _serve(scenario)
        assert error.status == 600
        assert "No source was found" in str(error)

    def test_request_timeout(self):
        async def scenario(url):
            client = ObsClient(request_timeout=0.1)
            await client.connect(url)
            try:
                with pytest.raises(TransportError) as exc:
                    await client.call("Ignore")
                return str(exc.value)
            finally:
                await client.disconnect()

        _, message = _serve(scenario)
        assert "timed out" in message

    def test_non_object_frames_ignored(self):
        async def scenario(url):
            client = ObsClient()
            await client.connect(url)
            try:
                await client.call("Noisy")
                await client.set_text("Player1Name", "Alice")
                return client.connected
            finally:
                await client.disconnect()

        fake, connected = _serve(scenario)
        assert connected
        assert [r["requestType"] for r in fake.requests] == ["Noisy", "SetInputSettings"]

    def test_not_connected(self):
        with pytest.raises(StateError):
            asyncio.run(ObsClient().set_text("Player1Name", "Alice"))


class TestClose:
    def test_server_close_fails_pending_and_notifies(self):
        closes = []

        async def scenario(url):
            client = ObsClient(on_close=closes.append)
            await client.connect(url)
            with pytest.raises(OverlayConnectionError):
                await client.call("Hangup")
            await asyncio.sleep(0.05)
            return client.connected

        _, connected = _serve(scenario)
        assert not connected
        assert len(closes) == 1
        assert "OBS is shutting down" in closes[0]

    def test_deliberate_disconnect_is_silent(self):
        closes = []

        async def scenario(url):
            client = ObsClient(on_close=closes.append)
            await client.connect(url)
            await client.disconnect()
            await asyncio.sleep(0.05)

        _serve(scenario)
        assert closes == []
