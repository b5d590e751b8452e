import socket
import threading
import time

import pytest

from parchisgame.master_server import MasterServer, NinjaConnection, main
from parchisgame.protocol import (
    NINJA_VERSION,
    ONLINE_VERSION,
    MessageKind,
    Packet,
    ParchisClient,
    ParchisRemote,
    ParchisServer,
    decode_message,
)


class FakeConn:
    def __init__(self, address="10.0.0.5", port=4000, replies=None, connected=True):
        self.remote_address = address
        self.remote_port = port
        self.sent = []
        self.replies = list(replies or [])
        self.connected = connected

    def is_connected(self):
        return self.connected

    def receive(self):
        if self.replies:
            return self.replies.pop(0)
        return MessageKind.ERROR_DISCONNECTED, Packet()

    def __getattr__(self, name):
        if name.startswith("send_"):
            return lambda *args: self.sent.append((name[5:], args))
        raise AttributeError(name)

    def kinds(self):
        return [name for name, _ in self.sent]


class FakeNinja(FakeConn):
    def __init__(self, status=(0, 0, 0), reserve_ok=True, status_kind=MessageKind.NINJA_STATUS, **kw):
        super().__init__(**kw)
        self.status = status
        self.reserve_ok = reserve_ok
        self.status_kind = status_kind

    def receive(self):
        last = self.sent[-1][0]
        if last == "how_are_you":
            packet = Packet()
            for value in self.status:
                packet.write_int(value)
            return self.status_kind, packet
        if last == "reserve_ip":
            kind = MessageKind.OK_RESERVED if self.reserve_ok else MessageKind.ERR_COULDNT_RESERVE
            return kind, Packet()
        return MessageKind.ERROR_DISCONNECTED, Packet()


def add_ninja(master, ninja, ip="192.0.2.10", port=9000):
    entry = NinjaConnection(ninja, ip, port)
    master.ninja_connections.append(entry)
    return entry


def hello_master(ip="192.0.2.7", port=9000, online=ONLINE_VERSION, ninja=NINJA_VERSION):
    return Packet().write_str(ip).write_int(port).write_int(online).write_int(ninja)


def hello(*args, version=ONLINE_VERSION):
    packet = Packet().write_int(version).write_int(len(args))
    for arg in args:
        packet.write_str(arg)
    return packet


def test_unexpected_greeting_is_rejected():
    master = MasterServer(0)
    conn = FakeConn(replies=[(MessageKind.OK, Packet())])
    master.handle_connection(conn)
    assert conn.sent == [("error", (MessageKind.ERR_INVALID_MESSAGE, "Mensaje inesperado."))]


def test_allowed_ninja_is_registered():
    master = MasterServer(0)
    master.add_allowed_ninja("192.0.2.7")
    conn = FakeConn(replies=[(MessageKind.HELLO_MASTER, hello_master())])
    master.handle_connection(conn)
    assert conn.kinds() == ["accept_ninja"]
    assert len(master.ninja_connections) == 1
    entry = master.ninja_connections[0]
    assert (entry.ip_addr, entry.port) == ("192.0.2.7", 9000)
    assert entry.connection is conn


def test_unknown_ninja_is_unauthorized():
    master = MasterServer(0)
    conn = FakeConn()
    master.handle_ninja_connection(conn, hello_master())
    assert conn.sent[0][1][0] == MessageKind.ERR_UNAUTHORIZED
    assert master.ninja_connections == []


@pytest.mark.parametrize(
    "packet",
    [hello_master(ninja=NINJA_VERSION + 1), hello_master(online=ONLINE_VERSION + 1)],
)
def test_outdated_ninja_must_update(packet):
    master = MasterServer(0)
    master.add_allowed_ninja("192.0.2.7")
    conn = FakeConn()
    master.handle_ninja_connection(conn, packet)
    assert conn.sent[0][1][0] == MessageKind.ERR_UPDATE
    assert master.ninja_connections == []


def test_outdated_client_must_update():
    master = MasterServer(0)
    conn = FakeConn()
    master.handle_client_connection(conn, hello("ninjagame", version=ONLINE_VERSION + 1))
    assert conn.kinds() == ["error"]
    assert conn.sent[0][1][0] == MessageKind.ERR_UPDATE


@pytest.mark.parametrize("args", [(), ("chess",), ("privateroom",), ("randomgame", "x")])
def test_unknown_game_mode(args):
    master = MasterServer(0)
    conn = FakeConn()
    master.handle_client_connection(conn, hello(*args))
    assert conn.sent[0][1][0] == MessageKind.ERR_INVALID_MESSAGE


def test_no_ninjas_available():
    master = MasterServer(0)
    conn = FakeConn()
    master.handle_client_connection(conn, hello("ninjagame"))
    assert conn.sent[0][1][0] == MessageKind.ERR_NO_NINJAS


def test_ninja_with_unexpected_reply_is_skipped():
    master = MasterServer(0)
    add_ninja(master, FakeNinja(status_kind=MessageKind.OK))
    conn = FakeConn()
    master.reserve_ninja_game(conn)
    assert conn.sent[0][1][0] == MessageKind.ERR_NO_NINJAS


def test_ninja_game_goes_to_least_busy():
    master = MasterServer(0, max_ninja_games=5)
    busy = FakeNinja(status=(3, 0, 0))
    idle = FakeNinja(status=(1, 0, 0))
    add_ninja(master, busy, "192.0.2.1", 9001)
    add_ninja(master, idle, "192.0.2.2", 9002)
    client = FakeConn(address="10.0.0.5", port=4000)
    master.handle_client_connection(client, hello("ninjagame"))
    assert ("reserve_ip", ("10.0.0.5", 4000)) in idle.sent
    assert "reserve_ip" not in busy.kinds()
    assert client.sent == [("accepted", ("192.0.2.2", 9002))]


def test_failed_reservation_is_reported():
    master = MasterServer(0, max_ninja_games=5)
    add_ninja(master, FakeNinja(reserve_ok=False))
    client = FakeConn()
    master.reserve_ninja_game(client)
    assert client.sent[0][1][0] == MessageKind.ERR_COULDNT_RESERVE


def test_full_ninjas_queue_clients():
    master = MasterServer(0, max_ninja_games=2)
    add_ninja(master, FakeNinja(status=(2, 0, 0)))
    first, second = FakeConn(port=1), FakeConn(port=2)
    master.reserve_ninja_game(first)
    master.reserve_ninja_game(second)
    assert first.sent == [("queued", (1,))]
    assert second.sent == [("queued", (2,))]
    assert list(master.queued_connections) == [first, second]


def test_revise_hands_queued_client_to_free_ninja():
    master = MasterServer(0, max_ninja_games=2)
    ninja = FakeNinja(status=(2, 0, 0))
    add_ninja(master, ninja, "192.0.2.3", 9003)
    first, second = FakeConn(port=1), FakeConn(port=2)
    master.reserve_ninja_game(first)
    master.reserve_ninja_game(second)

    ninja.status = (0, 0, 0)
    assert master.revise() == 0
    assert first.sent[-1] == ("accepted", ("192.0.2.3", 9003))
    assert second.sent[-1] == ("queued", (1,))
    assert list(master.queued_connections) == [second]


def test_revise_drops_lost_ninjas():
    master = MasterServer(0)
    lost = FakeNinja(connected=False)
    alive = FakeNinja()
    add_ninja(master, lost)
    kept = add_ninja(master, alive)
    assert master.revise() == 1
    assert master.ninja_connections == [kept]


def test_random_game_pairs_on_same_ninja():
    master = MasterServer(0)
    first_ninja = FakeNinja(status=(0, 2, 0))
    second_ninja = FakeNinja(status=(0, 1, 0))
    add_ninja(master, first_ninja, "192.0.2.1", 9001)
    entry = add_ninja(master, second_ninja, "192.0.2.2", 9002)

    a, b = FakeConn(port=1), FakeConn(port=2)
    master.reserve_random_game(a)
    assert master.last_random_assigned is entry
    second_ninja.status = (0, 5, 0)
    master.reserve_random_game(b)
    assert a.sent == [("accepted", ("192.0.2.2", 9002))]
    assert b.sent == [("accepted", ("192.0.2.2", 9002))]
    assert master.last_random_assigned is None


def test_private_room_is_joined_on_its_ninja():
    master = MasterServer(0)
    other = FakeNinja(status=(0, 0, 3))
    host = FakeNinja(status=(0, 0, 0))
    add_ninja(master, other, "192.0.2.1", 9001)
    entry = add_ninja(master, host, "192.0.2.2", 9002)

    a, b = FakeConn(port=1), FakeConn(port=2)
    master.handle_client_connection(a, hello("privateroom", "sala"))
    assert master.private_room_connections == {"sala": entry}
    host.status = (0, 0, 9)
    master.handle_client_connection(b, hello("privateroom", "sala"))
    assert b.sent == [("accepted", ("192.0.2.2", 9002))]
    assert master.private_room_connections == {}


def test_handle_connection_over_socket():
    left, right = socket.socketpair()
    client = ParchisRemote(left)
    server = ParchisServer(right)
    try:
        client.send_ok()
        MasterServer(0).handle_connection(server)
        kind, packet = client.receive()
        assert kind == MessageKind.ERR_INVALID_MESSAGE
        assert decode_message(packet) == "Mensaje inesperado."
    finally:
        client.close()
        server.close()


def test_start_serves_until_stopped():
    master = MasterServer(0, 2)
    thread = threading.Thread(target=master.start, daemon=True)
    thread.start()
    deadline = time.monotonic() + 5
    while master.port == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    try:
        with ParchisClient.connect("127.0.0.1", master.port) as client:
            client.send_ok()
            kind, packet = client.receive()
            assert kind == MessageKind.ERR_INVALID_MESSAGE
            assert decode_message(packet) == "Mensaje inesperado."
    finally:
        master.stop()
        thread.join(5)
    assert not thread.is_alive()


def test_main_rejects_bad_port():
    with pytest.raises(SystemExit) as excinfo:
        main(["--port", "abc"])
    assert excinfo.value.code == 2