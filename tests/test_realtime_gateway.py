"""
Tests for the Realtime Gateway and the event outbox.

These tests verify:
1. CONNECT: token checks, room membership, the join acknowledgement
2. EMIT: room addressing and the per-user pending queue
3. OUTBOX: events only leave after commit
"""

from uuid import uuid4

import pytest
from fastapi import status

from dealflow.core import create_access_token
from dealflow.models import UserRole
from dealflow.realtime import EventOutbox, RealtimeGateway, commit_and_publish, role_room, user_room


class FakeWebSocket:
    """Records what the gateway does with a socket."""

    def __init__(self, fail_sends: bool = False):
        self.accepted = False
        self.closed_with: int | None = None
        self.sent: list[dict] = []
        self.fail_sends = fail_sends

    async def accept(self):
        self.accepted = True

    async def close(self, code: int = status.WS_1000_NORMAL_CLOSURE):
        self.closed_with = code

    async def send_json(self, data):
        if self.fail_sends:
            raise RuntimeError("socket is gone")
        self.sent.append(data)

    def events(self) -> list[str]:
        return [message["event"] for message in self.sent]


def _token(user_id, role=UserRole.REPRESENTATIVE) -> str:
    return create_access_token(user_id, role)


async def _connect(gateway, user_id, role=UserRole.REPRESENTATIVE, ready=True):
    socket = FakeWebSocket()
    connection = await gateway.connect(socket, _token(user_id, role))
    if ready:
        await gateway.handle_message(connection, {"event": "join:user", "data": {"userId": str(user_id)}})
    return socket, connection


@pytest.fixture
async def gateway():
    gateway = RealtimeGateway(pending_ttl_seconds=30, pending_limit=3)
    await gateway.start()
    yield gateway
    await gateway.stop()


# =============================================================================
# TEST: CONNECT
# =============================================================================


class TestConnect:
    """Tests for socket authentication and acknowledgement."""

    async def test_valid_token_joins_user_and_role_rooms(self, gateway):
        user_id = uuid4()
        socket = FakeWebSocket()

        connection = await gateway.connect(socket, _token(user_id, UserRole.ADMIN))

        assert socket.accepted
        assert connection.rooms == {user_room(user_id), role_room(UserRole.ADMIN)}
        assert gateway.room_members(role_room(UserRole.ADMIN)) == {str(user_id)}
        [established] = socket.sent
        assert established["event"] == "connection:established"
        assert established["data"]["role"] == "admin"

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
    async def test_bad_token_is_closed_with_policy_violation(self, gateway, token):
        socket = FakeWebSocket()

        connection = await gateway.connect(socket, token)

        assert connection is None
        assert not socket.accepted
        assert socket.closed_with == status.WS_1008_POLICY_VIOLATION
        assert gateway.connection_count == 0

    async def test_join_acknowledges_own_user(self, gateway):
        user_id = uuid4()
        socket, connection = await _connect(gateway, user_id)

        assert connection.ready
        assert socket.events() == ["connection:established", "join:ack"]

    async def test_join_for_another_user_is_refused(self, gateway):
        socket, connection = await _connect(gateway, uuid4(), ready=False)

        await gateway.handle_message(connection, {"event": "join:user", "data": {"userId": str(uuid4())}})

        assert not connection.ready
        assert socket.events()[-1] == "error"

    async def test_ping(self, gateway):
        socket, connection = await _connect(gateway, uuid4())

        await gateway.handle_message(connection, {"event": "ping"})

        assert socket.events()[-1] == "pong"

    async def test_disconnect_leaves_rooms(self, gateway):
        user_id = uuid4()
        _, connection = await _connect(gateway, user_id)

        gateway.disconnect(connection)
        gateway.disconnect(connection)

        assert gateway.connection_count == 0
        assert gateway.room_members(user_room(user_id)) == set()


# =============================================================================
# TEST: EMIT
# =============================================================================


class TestEmit:
    """Tests for room fan-out and the pending queue."""

    async def test_user_room_reaches_only_that_user(self, gateway):
        alice, bob = uuid4(), uuid4()
        alice_socket, _ = await _connect(gateway, alice)
        bob_socket, _ = await _connect(gateway, bob)

        delivered = await gateway.emit("lead:deal_approved", {"message": "ok"}, [user_room(alice)])

        assert delivered == 1
        assert alice_socket.events()[-1] == "lead:deal_approved"
        assert bob_socket.events()[-1] == "join:ack"

    async def test_role_room_reaches_every_member(self, gateway):
        admin_socket, _ = await _connect(gateway, uuid4(), UserRole.ADMIN)
        rep_socket, _ = await _connect(gateway, uuid4(), UserRole.REPRESENTATIVE)

        delivered = await gateway.emit("stages:reordered", {"data": []}, [role_room(UserRole.REPRESENTATIVE)])

        assert delivered == 1
        assert rep_socket.events()[-1] == "stages:reordered"
        assert admin_socket.events()[-1] == "join:ack"

    async def test_payload_gets_timestamp(self, gateway):
        socket, _ = await _connect(gateway, uuid4())

        await gateway.emit("ping:test", {"value": 1})

        message = socket.sent[-1]
        assert message["data"]["value"] == 1
        assert "timestamp" in message["data"]

    async def test_offline_user_events_are_queued_then_flushed(self, gateway):
        user_id = uuid4()

        await gateway.emit("notification:new", {"n": 1}, [user_room(user_id)])
        await gateway.emit("notification:new", {"n": 2}, [user_room(user_id)])
        assert [payload["n"] for _, payload in gateway.pending_events(user_id)] == [1, 2]

        socket, _ = await _connect(gateway, user_id)

        assert socket.events() == [
            "connection:established",
            "join:ack",
            "notification:new",
            "notification:new",
        ]
        assert gateway.pending_events(user_id) == []

    async def test_unacknowledged_connection_does_not_receive(self, gateway):
        user_id = uuid4()
        socket, connection = await _connect(gateway, user_id, ready=False)

        delivered = await gateway.emit("notification:new", {"n": 1}, [user_room(user_id)])

        assert delivered == 0
        assert socket.events() == ["connection:established"]
        assert len(connection.pending) == 1
        assert gateway.pending_events(user_id) == []

        await gateway.handle_message(connection, {"event": "join:user", "data": {"userId": str(user_id)}})
        assert socket.events()[-1] == "notification:new"
        assert len(connection.pending) == 0

    async def test_second_socket_gets_events_sent_before_its_join(self, gateway):
        user_id = uuid4()
        first_socket, _ = await _connect(gateway, user_id)
        second_socket, second = await _connect(gateway, user_id, ready=False)

        delivered = await gateway.emit("notification:new", {"n": 1}, [user_room(user_id)])

        assert delivered == 1
        assert first_socket.events()[-1] == "notification:new"
        assert second_socket.events() == ["connection:established"]

        await gateway.handle_message(second, {"event": "join:user", "data": {"userId": str(user_id)}})

        assert second_socket.events() == ["connection:established", "join:ack", "notification:new"]
        assert first_socket.events().count("notification:new") == 1

    async def test_role_event_is_held_for_unacknowledged_socket(self, gateway):
        user_id = uuid4()
        await _connect(gateway, user_id, UserRole.ADMIN)
        late_socket, late = await _connect(gateway, user_id, UserRole.ADMIN, ready=False)

        await gateway.emit("deal:close_requested", {"leadId": "x"}, [role_room(UserRole.ADMIN)])
        await gateway.handle_message(late, {"event": "join:user", "data": {"userId": str(user_id)}})

        assert late_socket.events()[-1] == "deal:close_requested"

    async def test_connection_buffer_is_bounded(self, gateway):
        _, connection = await _connect(gateway, uuid4(), ready=False)
        for n in range(5):
            await gateway.emit("stages:reordered", {"n": n}, [role_room(UserRole.REPRESENTATIVE)])

        assert [item.payload["n"] for item in connection.pending] == [2, 3, 4]

    async def test_queue_is_bounded(self, gateway):
        user_id = uuid4()
        for n in range(5):
            await gateway.emit("notification:new", {"n": n}, [user_room(user_id)])

        assert [payload["n"] for _, payload in gateway.pending_events(user_id)] == [2, 3, 4]

    async def test_expired_events_are_dropped(self, gateway):
        user_id = uuid4()
        await gateway.emit("notification:new", {"n": 1}, [user_room(user_id)])
        gateway._pending[str(user_id)][0].queued_at -= 60

        # Queueing anything prunes stale entries
        await gateway.emit("notification:new", {"n": 2}, [user_room(uuid4())])

        assert gateway.pending_events(user_id) == []

    async def test_not_started_gateway_drops_events(self):
        gateway = RealtimeGateway()

        delivered = await gateway.emit("notification:new", {"n": 1}, [user_room(uuid4())])

        assert delivered == 0
        assert not gateway.is_running

    async def test_broken_socket_is_dropped(self, gateway):
        user_id = uuid4()
        socket, _ = await _connect(gateway, user_id)
        socket.fail_sends = True

        delivered = await gateway.emit("notification:new", {"n": 1}, [user_room(user_id)])

        assert delivered == 0
        assert gateway.connection_count == 0

    async def test_stop_closes_sockets(self, gateway):
        socket, _ = await _connect(gateway, uuid4())

        await gateway.stop()

        assert socket.closed_with == status.WS_1001_GOING_AWAY
        assert gateway.connection_count == 0


# =============================================================================
# TEST: OUTBOX
# =============================================================================


class TestOutbox:
    """Events are buffered and published in order."""

    async def test_publish_drains_in_order(self, gateway):
        user_id = uuid4()
        socket, _ = await _connect(gateway, user_id)
        outbox = EventOutbox()
        outbox.to_user(user_id, "first", {})
        outbox.to_user(user_id, "second", {})

        published = await outbox.publish(gateway)

        assert published == 2
        assert socket.events()[-2:] == ["first", "second"]
        assert outbox.events == []

    async def test_commit_failure_publishes_nothing(self, gateway, session, outbox):
        user_id = uuid4()
        socket, _ = await _connect(gateway, user_id)
        outbox.to_user(user_id, "never", {})

        async def failing_commit():
            raise RuntimeError("database went away")

        session.commit = failing_commit

        with pytest.raises(RuntimeError):
            await commit_and_publish(session, outbox, gateway)

        assert "never" not in socket.events()
        assert len(outbox.events) == 1
