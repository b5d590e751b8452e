"""Messages exchanged between game clients, ninja servers and the master server.

Every message travels as one packet: a 32-bit big-endian length followed by
the packet body. Inside a body, integers are 32-bit big-endian signed values
and strings are a 32-bit big-endian byte count followed by UTF-8 bytes. The
first integer of every body is the message kind.
"""

from __future__ import annotations

import logging
import socket
import struct
from enum import IntEnum
from typing import Iterable

from parchisgame.model import BoardConfig, Color

log = logging.getLogger(__name__)

ONLINE_VERSION = 1
"""Version of the online protocol spoken by this package."""

NINJA_VERSION = 1
"""Version of the ninja server spoken by this package."""

_INT = struct.Struct(">i")
_LEN = struct.Struct(">I")


class MessageKind(IntEnum):
    """Kinds of message; the value is the code sent on the wire."""

    NOP = 0
    HELLO = 100
    GAME_PARAMETERS = 101
    TEST_ALIVE = 102
    HELLO_MASTER = 103
    HOW_R_U = 104
    QUEUED = 105
    RESERVE_IP = 106
    KILL = 107
    RANDOM_GAME = 108
    PRIVATE_GAME = 109
    WAITING_FOR_PLAYERS = 110
    OK = 200
    OK_MOVED = 201
    NINJA_STATUS = 202
    NINJA_ACCEPTED = 203
    ACCEPTED = 204
    OK_RESERVED = 205
    OK_START_GAME = 206
    OK_RANDOM_PRIVATE_START = 209
    TEST_MESSAGE = 300
    MOVED = 301
    ERROR_DISCONNECTED = 400
    ERR_INVALID_MESSAGE = 401
    ERR_COULDNT_RESERVE = 402
    ERR_NO_NINJAS = 403
    ERR_UNAUTHORIZED = 404
    ERR_UPDATE = 405
    ERR_FULL_ROOM = 406


class ProtocolError(RuntimeError):
    """A message could not be sent, or a packet did not hold what was expected."""


class Packet:
    """A message body that is written to, or read from, front to back."""

    def __init__(self, data: bytes = b"") -> None:
        self._data = bytearray(data)
        self._pos = 0

    def __len__(self) -> int:
        return len(self._data)

    @property
    def exhausted(self) -> bool:
        """Whether everything in the packet has been read."""
        return self._pos >= len(self._data)

    def write_int(self, value: int) -> Packet:
        """Append a 32-bit signed integer."""
        try:
            self._data += _INT.pack(int(value))
        except struct.error as exc:
            raise ProtocolError(f"integer out of range: {value!r}") from exc
        return self

    def write_str(self, value: str) -> Packet:
        """Append a length-prefixed UTF-8 string."""
        raw = value.encode("utf-8")
        self._data += _LEN.pack(len(raw)) + raw
        return self

    def _take(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise ProtocolError("packet ended before the expected data")
        chunk = bytes(self._data[self._pos:end])
        self._pos = end
        return chunk

    def read_int(self) -> int:
        """Read the next 32-bit signed integer."""
        return _INT.unpack(self._take(_INT.size))[0]

    def read_str(self) -> str:
        """Read the next length-prefixed UTF-8 string."""
        (size,) = _LEN.unpack(self._take(_LEN.size))
        try:
            return self._take(size).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError("string is not valid UTF-8") from exc

    def to_bytes(self) -> bytes:
        """Return the whole body."""
        return bytes(self._data)


def _message(kind: MessageKind, *fields: int | str) -> Packet:
    packet = Packet().write_int(kind)
    for field in fields:
        if isinstance(field, str):
            packet.write_str(field)
        else:
            packet.write_int(field)
    return packet


def _enum(enum_type, value: int):
    try:
        return enum_type(value)
    except ValueError as exc:
        raise ProtocolError(f"invalid {enum_type.__name__} value: {value}") from exc


def decode_hello(packet: Packet) -> tuple[int, list[str]]:
    """Read a HELLO body: the client's protocol version and its arguments."""
    version = packet.read_int()
    count = packet.read_int()
    args = [packet.read_str() for _ in range(count)]
    log.debug("version: %d args: %s", version, " ".join(args))
    return version, args


def decode_hello_master(packet: Packet) -> tuple[str, int, int, int]:
    """Read a HELLO_MASTER body: contact ip, port, online and ninja versions."""
    ip_addr = packet.read_str()
    port = packet.read_int()
    online_version = packet.read_int()
    ninja_version = packet.read_int()
    return ip_addr, port, online_version, ninja_version


def decode_queue_pos(packet: Packet) -> int:
    """Read a QUEUED body: the position in the waiting queue."""
    return packet.read_int()


def decode_address(packet: Packet) -> tuple[str, int]:
    """Read an ip address and a port (RESERVE_IP and ACCEPTED bodies)."""
    ip_addr = packet.read_str()
    port = packet.read_int()
    return ip_addr, port


def decode_random_game(packet: Packet) -> str:
    """Read a RANDOM_GAME body: the player's name."""
    return packet.read_str()


def decode_private_game(packet: Packet) -> tuple[str, str]:
    """Read a PRIVATE_GAME body: the room name and the player's name."""
    room_name = packet.read_str()
    name = packet.read_str()
    return room_name, name


def decode_ninja_status(packet: Packet) -> tuple[int, int, int]:
    """Read a NINJA_STATUS body: ninja, random and private game counts."""
    return packet.read_int(), packet.read_int(), packet.read_int()


def decode_random_private_start(packet: Packet) -> tuple[int, str, BoardConfig]:
    """Read an OK_RANDOM_PRIVATE_START body: my player, rival's name, board."""
    player = packet.read_int()
    rival_name = packet.read_str()
    config = _enum(BoardConfig, packet.read_int())
    return player, rival_name, config


def decode_message(packet: Packet) -> str:
    """Read a text body (TEST_MESSAGE, OK_START_GAME and error messages)."""
    return packet.read_str()


def decode_move(packet: Packet) -> tuple[int, Color, int, int]:
    """Read a MOVED body: turn, piece colour, piece id and dice number."""
    turn = packet.read_int()
    c_piece = _enum(Color, packet.read_int())
    id_piece = packet.read_int()
    dice = packet.read_int()
    return turn, c_piece, id_piece, dice


def decode_game_parameters(packet: Packet) -> tuple[int, str, BoardConfig, int]:
    """Read a GAME_PARAMETERS body: player, name, initial board and AI id."""
    player = packet.read_int()
    name = packet.read_str()
    init_board = _enum(BoardConfig, packet.read_int())
    ai_id = packet.read_int()
    return player, name, init_board, ai_id


class ParchisRemote:
    """One end of a connection that speaks the game protocol."""

    def __init__(self, sock: socket.socket | None = None) -> None:
        self._sock = sock

    def __enter__(self) -> ParchisRemote:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def remote_address(self) -> str | None:
        """Address of the peer, or None when not connected."""
        peer = self._peer()
        if isinstance(peer, tuple):
            return peer[0]
        return peer

    @property
    def remote_port(self) -> int | None:
        """Port of the peer, or None when it has none."""
        peer = self._peer()
        if isinstance(peer, tuple):
            return peer[1]
        return None

    def _peer(self):
        if self._sock is None:
            return None
        try:
            return self._sock.getpeername()
        except OSError:
            return None

    def is_connected(self) -> bool:
        """Whether the connection still has a peer."""
        return self._sock is not None and self._peer() is not None

    def close(self) -> None:
        """Drop the connection."""
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None

    def _send(self, packet: Packet, label: str, *, strict: bool = False, drop: bool = False) -> None:
        body = packet.to_bytes()
        try:
            if self._sock is None:
                raise OSError("not connected")
            self._sock.sendall(_LEN.pack(len(body)) + body)
        except OSError as exc:
            if strict:
                raise ProtocolError(f"error sending {label}") from exc
            log.error("Error sending %s: %s", label, exc)
            if drop:
                self.close()
            return
        log.info("%s sent", label)

    def send_hello(self, args: Iterable[str]) -> None:
        args = list(args)
        packet = _message(MessageKind.HELLO, ONLINE_VERSION, len(args), *args)
        self._send(packet, "HELLO", drop=True)

    def send_game_parameters(self, player: int, name: str, init_board: BoardConfig, ai_id: int) -> None:
        packet = _message(MessageKind.GAME_PARAMETERS, player, name, int(init_board), ai_id)
        self._send(packet, "GAME_PARAMETERS", strict=True)

    def send_test_alive(self) -> None:
        self._send(_message(MessageKind.TEST_ALIVE), "TEST_ALIVE")

    def send_hello_master(self, ip: str, port: int) -> None:
        packet = _message(MessageKind.HELLO_MASTER, ip, port, ONLINE_VERSION, NINJA_VERSION)
        self._send(packet, "HELLO_MASTER")

    def send_how_are_you(self) -> None:
        self._send(_message(MessageKind.HOW_R_U), "HOW_R_U")

    def send_queued(self, queue_pos: int) -> None:
        self._send(_message(MessageKind.QUEUED, queue_pos), "QUEUED")

    def send_reserve_ip(self, ip: str, port: int) -> None:
        self._send(_message(MessageKind.RESERVE_IP, ip, port), "RESERVE_IP")

    def send_random_game(self, name: str) -> None:
        self._send(_message(MessageKind.RANDOM_GAME, name), "RANDOM_GAME")

    def send_private_game(self, room_name: str, name: str) -> None:
        self._send(_message(MessageKind.PRIVATE_GAME, room_name, name), "PRIVATE_GAME")

    def send_waiting_for_players(self) -> None:
        self._send(_message(MessageKind.WAITING_FOR_PLAYERS), "WAITING_FOR_PLAYERS")

    def send_ok(self) -> None:
        self._send(_message(MessageKind.OK), "OK")

    def send_ok_moved(self) -> None:
        self._send(_message(MessageKind.OK_MOVED), "OK_MOVED")

    def send_ok_start_game(self, name: str) -> None:
        self._send(_message(MessageKind.OK_START_GAME, name), "OK_START_GAME")

    def send_ninja_status(self, ninja_games: int, random_games: int, private_games: int) -> None:
        packet = _message(MessageKind.NINJA_STATUS, ninja_games, random_games, private_games)
        self._send(packet, "NINJA_STATUS")

    def send_accept_ninja(self) -> None:
        self._send(_message(MessageKind.NINJA_ACCEPTED), "NINJA_ACCEPTED")

    def send_accepted(self, ip_addr: str, port: int) -> None:
        self._send(_message(MessageKind.ACCEPTED, ip_addr, port), "ACCEPTED")

    def send_ok_reserved(self) -> None:
        self._send(_message(MessageKind.OK_RESERVED), "OK_RESERVED")

    def send_random_private_start(self, player: int, rival_name: str, config: BoardConfig) -> None:
        packet = _message(MessageKind.OK_RANDOM_PRIVATE_START, player, rival_name, int(config))
        self._send(packet, "OK_RANDOM_PRIVATE_START")

    def send_test_message(self, message: str) -> None:
        self._send(_message(MessageKind.TEST_MESSAGE, message), "TEST_MESSAGE", strict=True)

    def send_move(self, turn: int, c_piece: Color, id_piece: int, dice: int) -> None:
        packet = _message(MessageKind.MOVED, turn, int(c_piece), id_piece, dice)
        self._send(packet, "MOVED", drop=True)

    def send_error(self, kind: MessageKind, message: str) -> None:
        self._send(_message(kind, message), f"{MessageKind(kind).name} error message", drop=True)

    def _recv_exact(self, n: int) -> bytes:
        chunks = bytearray()
        while len(chunks) < n:
            chunk = self._sock.recv(n - len(chunks))
            if not chunk:
                raise ConnectionError("connection closed by peer")
            chunks += chunk
        return bytes(chunks)

    def receive(self) -> tuple[MessageKind | int, Packet]:
        """Wait for the next message and return its kind and the rest of its body.

        A lost connection is reported as ERROR_DISCONNECTED. A kind this
        protocol does not know is returned as a plain integer.
        """
        if not self.is_connected():
            return MessageKind.ERROR_DISCONNECTED, Packet()
        try:
            (size,) = _LEN.unpack(self._recv_exact(_LEN.size))
            packet = Packet(self._recv_exact(size))
        except OSError as exc:
            log.error("Error receiving message: %s", exc)
            self.close()
            return MessageKind.ERROR_DISCONNECTED, Packet()
        code = packet.read_int() if len(packet) >= _INT.size else MessageKind.NOP
        try:
            kind: MessageKind | int = MessageKind(code)
        except ValueError:
            log.warning("Received unknown message: %d", code)
            return code, packet
        log.info("%d %s received", kind.value, kind.name)
        return kind, packet


class ParchisClient(ParchisRemote):
    """The end of a connection that started it."""

    @classmethod
    def connect(cls, host: str, port: int) -> ParchisClient:
        """Connect to a server at ``host``:``port``."""
        try:
            sock = socket.create_connection((host, port))
        except OSError as exc:
            raise ProtocolError("could not connect to server") from exc
        log.info("Connected to server %s:%d", host, port)
        return cls(sock)


class ParchisServer(ParchisRemote):
    """The end of a connection that was accepted from a listener."""

    @classmethod
    def accept(cls, listener: socket.socket) -> ParchisServer:
        """Accept the next connection waiting on ``listener``."""
        try:
            sock, address = listener.accept()
        except OSError as exc:
            raise ProtocolError("could not accept connection") from exc
        log.info("Accepted connection from %s", address)
        return cls(sock)