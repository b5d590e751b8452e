"""A ninja server: hosts games against the built-in opponent and between remote players.

The master server tells a ninja which client addresses it may accept. Each
accepted client then asks for one of three kinds of game: a game against the
ninja opponent, a random pairing with another client, or a private room that
a second client joins by name.
"""

from __future__ import annotations

import logging
import socket
import threading
from dataclasses import dataclass
from typing import Any, Callable, NamedTuple

from parchisgame.model import BoardConfig
from parchisgame.players import Ninja
from parchisgame.protocol import (
    MessageKind,
    Packet,
    ParchisClient,
    ParchisRemote,
    ParchisServer,
    ProtocolError,
    decode_address,
    decode_game_parameters,
    decode_message,
    decode_private_game,
    decode_random_game,
)

log = logging.getLogger(__name__)

_REVISE_INTERVAL = 10.0
_ACCEPT_TIMEOUT = 0.2
_PAIRED_BOARD = BoardConfig.GROUPED
_GAME_REQUESTS = frozenset(
    {MessageKind.GAME_PARAMETERS, MessageKind.RANDOM_GAME, MessageKind.PRIVATE_GAME}
)
_UNAUTHORIZED_TEXT = "Esta máquina no ha sido autorizada para jugar."
_FULL_ROOM_TEXT = (
    "La sala indicada ya existe y está completa. Por favor, indica otro nombre de sala."
)
_SHUTDOWN_TEXT = "Problemas internos."


@dataclass(frozen=True)
class ServerConnection:
    """An address and port the master has allowed to connect."""

    ip_addr: str
    port: int


class _RemoteSeat(NamedTuple):
    """A seat at a game filled by a player on the other end of a connection."""

    name: str
    connection: Any


@dataclass
class _NinjaGame:
    connection: Any
    thread: threading.Thread | None


@dataclass
class _PairedGame:
    connection_p1: Any
    name_p1: str
    connection_p2: Any = None
    name_p2: str = ""
    waiting_for_players: bool = True
    thread: threading.Thread | None = None
    aux_thread: threading.Thread | None = None


def _join(thread: threading.Thread | None) -> None:
    """Wait for ``thread`` to finish, unless it is this thread or never ran."""
    if thread is None or thread is threading.current_thread() or not thread.is_alive():
        return
    thread.join()


class NinjaServer:
    """Accepts reserved clients and runs the games they ask for.

    ``game_runner(config, player1, player2)`` plays one whole game. A remote
    player is passed as a seat with ``name`` and ``connection``; the built-in
    opponent is passed as a :class:`Ninja`.
    """

    def __init__(
        self,
        port: int,
        contact_ip: str,
        game_runner: Callable[[BoardConfig, Any, Any], object],
    ) -> None:
        self.port = port
        self.contact_ip = contact_ip
        self.game_runner = game_runner
        self.master_ip: str | None = None
        self.master_port: int | None = None
        self.master_connection: ParchisRemote | None = None
        self.revise_interval = _REVISE_INTERVAL

        self._reserved: set[ServerConnection] = set()
        self._ninja_games: list[_NinjaGame] = []
        self._random_games: list[_PairedGame] = []
        self._private_rooms: dict[str, _PairedGame] = {}
        self._dead_threads: list[threading.Thread] = []

        self._reserved_lock = threading.Lock()
        self._ninja_lock = threading.Lock()
        self._random_lock = threading.Lock()
        self._private_lock = threading.Lock()
        self._dead_lock = threading.Lock()
        self._state_lock = threading.Lock()

        self._stopping = threading.Event()
        self._stopped = False
        self._listener: socket.socket | None = None
        self._reviser: threading.Thread | None = None
        self._master_thread: threading.Thread | None = None

    def set_master(self, master_ip: str, master_port: int) -> None:
        """Set where the master server listens."""
        self.master_ip = master_ip
        self.master_port = master_port

    def reserve(self, ip_addr: str, port: int) -> None:
        """Allow one connection from ``ip_addr``:``port``."""
        with self._reserved_lock:
            self._reserved.add(ServerConnection(ip_addr, port))
        log.info("Reserved IP: %s:%d", ip_addr, port)

    def status(self) -> tuple[int, int, int]:
        """Return how many ninja games, random matches and private rooms are held."""
        with self._ninja_lock:
            ninja = len(self._ninja_games)
        with self._random_lock:
            random_games = len(self._random_games)
        with self._private_lock:
            private = len(self._private_rooms)
        return ninja, random_games, private

    def _take_reservation(self, server: Any) -> bool:
        con = ServerConnection(server.remote_address, server.remote_port)
        with self._reserved_lock:
            if con in self._reserved:
                self._reserved.discard(con)
                return True
        return False

    def handle_connection(self, server: Any) -> None:
        """Serve one accepted client: check its reservation and start what it asks for."""
        if not self._take_reservation(server):
            log.warning(
                "Connection from %s:%s is not allowed.", server.remote_address, server.remote_port
            )
            server.send_error(MessageKind.ERR_UNAUTHORIZED, _UNAUTHORIZED_TEXT)
            return

        while True:
            kind, packet = server.receive()
            if kind in _GAME_REQUESTS:
                break
            if kind == MessageKind.ERROR_DISCONNECTED:
                log.warning("Client left before asking for a game")
                return

        if kind == MessageKind.GAME_PARAMETERS:
            self.new_ninja_game(server, packet)
        elif kind == MessageKind.RANDOM_GAME:
            self.queue_random_match_game(server, packet)
        else:
            self.queue_private_room_game(server, packet)

    def new_ninja_game(self, server: Any, packet: Packet) -> None:
        """Play a game between the client and the ninja opponent."""
        player, name, init_board, ai_id = decode_game_parameters(packet)
        with self._ninja_lock:
            self._ninja_games.append(_NinjaGame(server, threading.current_thread()))

        remote = _RemoteSeat(name, server)
        if player == 0:
            ninja = Ninja("J2", ai_id)
            server.send_ok_start_game(ninja.name)
            self.game_runner(init_board, remote, ninja)
        else:
            ninja = Ninja("J1", ai_id)
            server.send_ok_start_game(ninja.name)
            self.game_runner(init_board, ninja, remote)

    @staticmethod
    def _complete(game: _PairedGame, server: Any, name: str) -> tuple[_RemoteSeat, _RemoteSeat]:
        game.connection_p2 = server
        game.name_p2 = name
        game.thread = threading.current_thread()
        game.waiting_for_players = False
        p1 = _RemoteSeat(game.name_p1, game.connection_p1)
        p2 = _RemoteSeat(game.name_p2, game.connection_p2)
        game.connection_p1.send_random_private_start(0, p2.name, _PAIRED_BOARD)
        game.connection_p2.send_random_private_start(1, p1.name, _PAIRED_BOARD)
        return p1, p2

    def queue_random_match_game(self, server: Any, packet: Packet) -> None:
        """Pair the client with the one waiting for a random match, or make it wait."""
        name = decode_random_game(packet)
        seats = None
        with self._random_lock:
            last = self._random_games[-1] if self._random_games else None
            if last is not None and last.waiting_for_players:
                seats = self._complete(last, server, name)
            else:
                self._random_games.append(
                    _PairedGame(server, name, aux_thread=threading.current_thread())
                )
        if seats is None:
            server.send_waiting_for_players()
        else:
            self.game_runner(_PAIRED_BOARD, *seats)

    def queue_private_room_game(self, server: Any, packet: Packet) -> None:
        """Open the named room for the client, or join the one waiting in it."""
        room_name, name = decode_private_game(packet)
        seats = None
        full = False
        with self._private_lock:
            room = self._private_rooms.get(room_name)
            if room is None:
                self._private_rooms[room_name] = _PairedGame(
                    server, name, aux_thread=threading.current_thread()
                )
            elif room.waiting_for_players:
                seats = self._complete(room, server, name)
            else:
                full = True

        if full:
            server.send_error(MessageKind.ERR_FULL_ROOM, _FULL_ROOM_TEXT)
            with self._dead_lock:
                self._dead_threads.append(threading.current_thread())
        elif seats is None:
            server.send_waiting_for_players()
        else:
            self.game_runner(_PAIRED_BOARD, *seats)

    @staticmethod
    def _paired_gone(game: _PairedGame) -> bool:
        game.connection_p1.send_test_alive()
        if not game.connection_p1.is_connected():
            _join(game.thread)
            return True
        if not game.waiting_for_players:
            game.connection_p2.send_test_alive()
            if not game.connection_p2.is_connected():
                _join(game.thread)
                return True
        return False

    def revise(self) -> int:
        """Drop the games whose players have gone; return how many entries were removed."""
        removed = 0

        with self._ninja_lock:
            games = list(self._ninja_games)
        gone = []
        for game in games:
            game.connection.send_test_alive()
            if not game.connection.is_connected():
                _join(game.thread)
                gone.append(game)
        with self._ninja_lock:
            self._ninja_games = [g for g in self._ninja_games if g not in gone]
        removed += len(gone)
        log.info("Ninja games: %d (%d removed)", len(self._ninja_games), len(gone))

        with self._random_lock:
            kept = [g for g in self._random_games if not self._paired_gone(g)]
            count = len(self._random_games) - len(kept)
            self._random_games = kept
        removed += count
        log.info("Random matches: %d (%d removed)", len(kept), count)

        with self._private_lock:
            rooms = {k: g for k, g in self._private_rooms.items() if not self._paired_gone(g)}
            count = len(self._private_rooms) - len(rooms)
            self._private_rooms = rooms
        removed += count
        log.info("Private rooms: %d (%d removed)", len(rooms), count)

        with self._dead_lock:
            dead, self._dead_threads = self._dead_threads, []
        for thread in dead:
            _join(thread)
        removed += len(dead)
        log.info("Dead threads: %d removed", len(dead))

        return removed

    def handle_master_message(self, kind: MessageKind | int, packet: Packet) -> bool:
        """Act on a message from the master; return whether to keep listening to it."""
        if kind == MessageKind.RESERVE_IP:
            ip_addr, port = decode_address(packet)
            self.reserve(ip_addr, port)
            self.master_connection.send_ok_reserved()
        elif kind == MessageKind.HOW_R_U:
            self.master_connection.send_ninja_status(*self.status())
        elif kind == MessageKind.ERROR_DISCONNECTED:
            log.error("Master disconnected")
            self.stop()
            return False
        else:
            log.warning("Unexpected/unknown message kind: %s", kind)
        return True

    def connect_to_master(self) -> None:
        """Introduce this server to the master and wait to be accepted."""
        if self.master_ip is None or self.master_port is None:
            raise ValueError("master address not set")
        master = ParchisClient.connect(self.master_ip, self.master_port)
        self.master_connection = master
        master.send_hello_master(self.contact_ip, self.port)
        kind, packet = master.receive()
        if kind == MessageKind.NINJA_ACCEPTED:
            log.info("Ninja accepted by master")
            return
        master.close()
        if kind == MessageKind.ERROR_DISCONNECTED:
            raise ProtocolError("master closed the connection")
        if kind >= 400:
            raise ProtocolError(f"Ninja rejected by master: {decode_message(packet)}")
        raise ProtocolError(f"unexpected message from master: {kind}")

    def _reviser_loop(self) -> None:
        while not self._stopping.wait(self.revise_interval):
            self.revise()

    def _master_loop(self) -> None:
        while not self._stopping.is_set():
            master = self.master_connection
            if master is None:
                break
            kind, packet = master.receive()
            if not self.handle_master_message(kind, packet):
                break

    def _accept_loop(self) -> None:
        while not self._stopping.is_set():
            listener = self._listener
            if listener is None:
                break
            try:
                server = ParchisServer.accept(listener)
            except ProtocolError:
                continue
            threading.Thread(
                target=self.handle_connection, args=(server,), daemon=True
            ).start()

    def start(self) -> None:
        """Listen, register with the master and serve clients until stopped."""
        with self._state_lock:
            self._stopped = False
        self._stopping.clear()
        try:
            listener = socket.create_server(("", self.port))
        except OSError as exc:
            raise ProtocolError("could not listen to port") from exc
        listener.settimeout(_ACCEPT_TIMEOUT)
        self.port = listener.getsockname()[1]
        self._listener = listener
        log.info("Listening on port %d", self.port)

        try:
            self.connect_to_master()
        except BaseException:
            listener.close()
            self._listener = None
            raise

        self._reviser = threading.Thread(target=self._reviser_loop, daemon=True)
        self._master_thread = threading.Thread(target=self._master_loop, daemon=True)
        self._reviser.start()
        self._master_thread.start()
        self._accept_loop()

    def stop(self) -> None:
        """Stop accepting clients and tell the players of ninja games to leave."""
        with self._state_lock:
            if self._stopped:
                return
            self._stopped = True
        self._stopping.set()

        listener, self._listener = self._listener, None
        if listener is not None:
            log.info("Stopping listener...")
            listener.close()

        with self._ninja_lock:
            games = list(self._ninja_games)
        for game in games:
            log.info("Closing connection with game at %s", game.connection.remote_address)
            game.connection.send_error(MessageKind.ERROR_DISCONNECTED, _SHUTDOWN_TEXT)
            _join(game.thread)

        _join(self._reviser)
        if self.master_connection is not None:
            self.master_connection.close()