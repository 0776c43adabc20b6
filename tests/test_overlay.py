"""
tests/test_overlay.py - OverlaySupervisor state machine and overlay pushes.

A fake client factory stands in for OBS; every client records what it was
asked to do in one shared event log.
"""

import asyncio

import pytest

from nextup.errors import OverlayConnectionError, StateError, TransportError
from nextup.models import Bracket, ConnectionState, Match, MatchStatus, Player, Slot
from nextup.overlay import PLACEHOLDER, OverlaySupervisor, overlay_fields


class FakeObs:
    def __init__(self, index, on_close, plan, log, fail_fields=(), fail_scene=False):
        self.index = index
        self.on_close = on_close
        self.plan = plan
        self.log = log
        self.fail_fields = set(fail_fields)
        self.fail_scene = fail_scene
        self.texts: dict[str, str] = {}
        self.scene: str | None = None

    async def connect(self, url, password):
        self.log.append(("connect", self.index, url))
        if self.plan == "hang":
            await asyncio.Event().wait()
        if self.plan == "fail":
            raise OverlayConnectionError(f"Could not connect to {url}: refused")
        if self.plan == "crash":
            raise AttributeError("'list' object has no attribute 'get'")

    async def disconnect(self):
        self.log.append(("disconnect", self.index))

    async def set_text(self, name, text):
        if name in self.fail_fields:
            raise TransportError(f"SetInputSettings failed: No source named {name}", status=600)
        self.texts[name] = text

    async def set_scene(self, name):
        if self.fail_scene:
            raise TransportError(f"SetCurrentProgramScene failed: No scene named {name}", status=600)
        self.scene = name


class FakeFactory:
    """Hands out FakeObs clients following a plan; the last plan repeats."""

    def __init__(self, *plans, **client_kwargs):
        self.plans = list(plans) or ["ok"]
        self.client_kwargs = client_kwargs
        self.clients: list[FakeObs] = []
        self.log: list[tuple] = []

    def __call__(self, on_close):
        plan = self.plans.pop(0) if len(self.plans) > 1 else self.plans[0]
        client = FakeObs(len(self.clients), on_close, plan, self.log, **self.client_kwargs)
        self.clients.append(client)
        return client


def _supervisor(factory, **kwargs) -> OverlaySupervisor:
    kwargs.setdefault("reconnect_delay", 60.0)
    return OverlaySupervisor(url="ws://obs.test:4455", client_factory=factory, **kwargs)


def _match(p1="p1", p2="p2") -> Match:
    return Match(
        id="W-1",
        status=MatchStatus.READY,
        bracket=Bracket.LOSERS,
        round=3,
        best_of=5,
        slots=(Slot(player_id=p1), Slot(player_id=p2)),
    )


PLAYERS = [
    Player(id="p1", name="Alice", tag="ALC", seed=1),
    Player(id="p2", name="Bob", seed=8),
]


# ======================================================================
# Overlay fields
# ======================================================================


class TestOverlayFields:
    def test_labels(self):
        fields = overlay_fields(_match(), PLAYERS)
        assert fields["MatchName"] == "Losers Bracket Round 3"
        assert fields["BracketName"] == "Losers Bracket"
        assert fields["RoundNumber"] == "Round 3"
        assert fields["ScoreToWin"] == "First to 3"
        assert fields["Player1Name"] == "Alice"
        assert fields["Player1Tag"] == "ALC"
        assert fields["Player1Seed"] == "1"
        assert fields["Player2Tag"] == ""
        assert fields["Player2Seed"] == "8"

    def test_unresolved_players(self):
        fields = overlay_fields(_match(p1=None, p2="ghost"), PLAYERS)
        assert fields["Player1Name"] == PLACEHOLDER
        assert fields["Player2Name"] == PLACEHOLDER
        assert fields["Player1Seed"] == ""


# ======================================================================
# Connection state machine
# ======================================================================


class TestConnect:
    def test_success(self):
        factory = FakeFactory("ok")

        async def scenario():
            sup = _supervisor(factory)
            states = []
            sup.subscribe_state(states.append)
            await sup.connect()
            return sup, states

        sup, states = asyncio.run(scenario())
        assert sup.state == ConnectionState.CONNECTED
        assert sup.connected
        assert sup.last_error is None
        assert states == [
            ConnectionState.DISCONNECTED,
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
        ]

    def test_reconnect_tears_down_first(self):
        factory = FakeFactory("ok")

        async def scenario():
            sup = _supervisor(factory)
            await sup.connect()
            await sup.connect("ws://other:4455")
            return sup

        sup = asyncio.run(scenario())
        assert factory.log == [
            ("connect", 0, "ws://obs.test:4455"),
            ("disconnect", 0),
            ("connect", 1, "ws://other:4455"),
        ]
        assert sup.connected
        assert sup.url == "ws://other:4455"

    def test_timeout(self):
        factory = FakeFactory("hang")

        async def scenario():
            sup = _supervisor(factory, connect_timeout=0.05)
            with pytest.raises(OverlayConnectionError) as exc:
                await sup.connect(manual=True)
            return sup, exc.value

        sup, error = asyncio.run(scenario())
        assert "Connection timeout" in str(error)
        assert sup.state == ConnectionState.DISCONNECTED
        assert sup.last_error == str(error)
        assert ("disconnect", 0) in factory.log

    def test_error_observers_replay(self):
        factory = FakeFactory("fail")

        async def scenario():
            sup = _supervisor(factory)
            with pytest.raises(OverlayConnectionError):
                await sup.connect(manual=True)
            seen = []
            sup.subscribe_error(seen.append)
            return seen

        seen = asyncio.run(scenario())
        assert len(seen) == 1
        assert "refused" in seen[0]


class TestAutoReconnect:
    def test_manual_failure_does_not_reconnect(self):
        factory = FakeFactory("fail")

        async def scenario():
            sup = _supervisor(factory)
            with pytest.raises(OverlayConnectionError):
                await sup.connect(manual=True)
            return sup

        sup = asyncio.run(scenario())
        assert not sup.auto_reconnect
        assert not sup.reconnect_pending
        assert sup.state == ConnectionState.DISCONNECTED

    def test_failure_after_success_schedules_one(self):
        factory = FakeFactory("ok", "fail")

        async def scenario():
            sup = _supervisor(factory)
            await sup.connect(manual=True)
            assert sup.auto_reconnect
            with pytest.raises(OverlayConnectionError):
                await sup.connect()
            pending = sup.reconnect_pending
            second = sup._schedule_reconnect()
            await sup.disconnect()
            return pending, second

        pending, second = asyncio.run(scenario())
        assert pending is True
        assert second is False

    def test_unexpected_client_error_still_disconnects(self):
        factory = FakeFactory("ok", "crash")

        async def scenario():
            sup = _supervisor(factory)
            await sup.connect(manual=True)
            with pytest.raises(OverlayConnectionError) as exc:
                await sup.connect()
            snapshot = (sup.state, sup.last_error, sup.reconnect_pending, sup._client)
            await sup.disconnect()
            return snapshot, exc.value

        (state, error, pending, client), raised = asyncio.run(scenario())
        assert state == ConnectionState.DISCONNECTED
        assert error == str(raised)
        assert "has no attribute" in error
        assert pending
        assert client is None
        assert ("disconnect", 1) in factory.log

    def test_close_event_schedules_reconnect(self):
        factory = FakeFactory("ok")

        async def scenario():
            sup = _supervisor(factory)
            await sup.connect()
            factory.clients[0].on_close("Connection closed (1006)")
            snapshot = (sup.state, sup.last_error, sup.reconnect_pending)
            factory.clients[0].on_close("again")
            still_one = sup.reconnect_pending
            await sup.disconnect()
            return snapshot, still_one

        (state, error, pending), still_one = asyncio.run(scenario())
        assert state == ConnectionState.DISCONNECTED
        assert error == "Connection closed (1006)"
        assert pending
        assert still_one

    def test_reconnect_fires_after_delay(self):
        factory = FakeFactory("ok")

        async def scenario():
            sup = _supervisor(factory, reconnect_delay=0.01)
            await sup.connect()
            factory.clients[0].on_close("gone")
            await asyncio.sleep(0.1)
            return sup

        sup = asyncio.run(scenario())
        assert sup.connected
        assert len(factory.clients) == 2
        assert not sup.reconnect_pending

    def test_failed_reconnect_rearms(self):
        factory = FakeFactory("ok", "fail")

        async def scenario():
            sup = _supervisor(factory, reconnect_delay=0.01)
            await sup.connect()
            factory.clients[0].on_close("gone")
            await asyncio.sleep(0.05)
            result = (sup.state, len(factory.clients) >= 2)
            await sup.disconnect()
            return result

        state, retried = asyncio.run(scenario())
        assert retried
        assert state in (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING)

    def test_stale_close_ignored(self):
        factory = FakeFactory("ok")

        async def scenario():
            sup = _supervisor(factory)
            await sup.connect()
            await sup.connect()
            factory.clients[0].on_close("old socket closed")
            return sup

        sup = asyncio.run(scenario())
        assert sup.connected
        assert not sup.reconnect_pending

    def test_disconnect_cancels_pending(self):
        factory = FakeFactory("ok")

        async def scenario():
            sup = _supervisor(factory)
            await sup.connect()
            factory.clients[0].on_close("gone")
            assert sup.reconnect_pending
            await sup.disconnect()
            return sup

        sup = asyncio.run(scenario())
        assert not sup.reconnect_pending
        assert sup.state == ConnectionState.DISCONNECTED
        assert sup.last_error is None

    def test_manual_success_reenables_auto(self):
        factory = FakeFactory("fail", "ok")

        async def scenario():
            sup = _supervisor(factory)
            with pytest.raises(OverlayConnectionError):
                await sup.connect(manual=True)
            assert not sup.auto_reconnect
            await sup.connect(manual=True)
            return sup

        sup = asyncio.run(scenario())
        assert sup.auto_reconnect
        assert sup.last_error is None


# ======================================================================
# Overlay updates
# ======================================================================


class TestUpdateOverlay:
    def test_not_connected(self):
        factory = FakeFactory("ok")
        sup = _supervisor(factory)
        with pytest.raises(StateError):
            asyncio.run(sup.update_overlay(_match(), PLAYERS, "Arena 1"))
        assert factory.clients == []

    def test_pushes_fields_then_scene(self):
        factory = FakeFactory("ok")

        async def scenario():
            sup = _supervisor(factory)
            await sup.connect()
            return await sup.update_overlay(_match(), PLAYERS, "Arena 1")

        result = asyncio.run(scenario())
        client = factory.clients[0]
        assert client.scene == "Arena 1"
        assert len(client.texts) == 10
        assert result.failed == []
        assert result.fields == client.texts

    def test_partial_field_failure(self):
        factory = FakeFactory("ok", fail_fields={"Player1Tag", "Player2Seed"})

        async def scenario():
            sup = _supervisor(factory)
            await sup.connect()
            return await sup.update_overlay(_match(), PLAYERS, "Stream")

        result = asyncio.run(scenario())
        client = factory.clients[0]
        assert sorted(result.failed) == ["Player1Tag", "Player2Seed"]
        assert client.scene == "Stream"
        assert client.texts["Player1Name"] == "Alice"
        assert "Player1Tag" not in client.texts

    def test_scene_failure_raises(self):
        factory = FakeFactory("ok", fail_scene=True)

        async def scenario():
            sup = _supervisor(factory)
            await sup.connect()
            with pytest.raises(TransportError):
                await sup.update_overlay(_match(), PLAYERS, "Nowhere")
            return sup

        sup = asyncio.run(scenario())
        assert len(factory.clients[0].texts) == 10
        assert "Nowhere" in sup.last_error
        assert sup.connected

    def test_update_text_and_switch_scene(self):
        factory = FakeFactory("ok")

        async def scenario():
            sup = _supervisor(factory)
            await sup.connect()
            await sup.update_text("Caster", "Someone")
            await sup.switch_scene("Break")

        asyncio.run(scenario())
        assert factory.clients[0].texts == {"Caster": "Someone"}
        assert factory.clients[0].scene == "Break"
