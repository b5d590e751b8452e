"""The master server: sends each client to a ninja server that has room for its game.

Ninja servers introduce themselves with HELLO_MASTER and are kept if their
contact address is allowed. Clients say HELLO with the kind of game they want:
a game against a ninja, a random pairing or a private room. The master asks
every ninja how busy it is, reserves the client's address on the least busy
one and tells the client where to go. Clients that find every ninja full wait
in a queue until one frees up.
"""

from __future__ import annotations

import argparse
import logging
import socket
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any

from parchisgame.protocol import (
    NINJA_VERSION,
    ONLINE_VERSION,
    MessageKind,
    Packet,
    ParchisServer,
    ProtocolError,
    decode_hello,
    decode_hello_master,
    decode_ninja_status,
)

log = logging.getLogger(__name__)

MAX_ALLOWED_NINJA_GAMES = 10
"""Ninja games a ninja server may hold before new clients are queued."""

DEFAULT_PORT = 8888

_REVISE_INTERVAL = 10.0
_ACCEPT_TIMEOUT = 0.2
_NO_OCCUPATION = 999999

_NINJA_GAMES, _RANDOM_GAMES, _PRIVATE_GAMES = range(3)

_UNEXPECTED_TEXT = "Mensaje inesperado."
_NINJA_UPDATE_TEXT = (
    "Hay una versión más reciente del servidor ninja. Es necesario actualizar el repositorio."
)
_ONLINE_UPDATE_TEXT = (
    "Hay una actualización disponible del juego y del modo online. "
    "Es necesario actualizar el repositorio."
)
_NINJA_UNAUTHORIZED_TEXT = "Este servidor no está autorizado para ser un ninja."
_CLIENT_UPDATE_TEXT = (
    "Hay una versión más reciente del juego. Es necesario actualizar el repositorio para "
    "jugar online, y también recomendable para el juego local. Recuerda: git pull upstream "
    "main (tras haber seguido los pasos del tutorial)."
)
_UNKNOWN_MODE_TEXT = "No entendí el modo de juego que me enviaste."
_COULDNT_RESERVE_NINJA_TEXT = (
    "No se ha podido asignar un servidor ninja. Inténtalo de nuevo, por favor. "
    "Si el problema persiste avisa a tus profesores."
)
_COULDNT_RESERVE_TEXT = (
    "No se ha podido asignar un servidor. Inténtalo de nuevo, por favor. "
    "Si el problema persiste avisa a tus profesores."
)
_NO_NINJAS_TEXT = "No hay servidores ninja disponibles. Avisa a tus profesores."


@dataclass(eq=False)
class NinjaConnection:
    """A registered ninja server: its connection and the address clients should use."""

    connection: Any
    ip_addr: str
    port: int


class MasterServer:
    """Registers ninja servers and hands clients out to them."""

    def __init__(self, port: int, max_ninja_games: int = MAX_ALLOWED_NINJA_GAMES) -> None:
        self.port = port
        self.max_ninja_games = max_ninja_games
        self.revise_interval = _REVISE_INTERVAL
        self.allowed_ninja_ips: set[str] = set()
        self.ninja_connections: list[NinjaConnection] = []
        self.queued_connections: deque[Any] = deque()
        self.private_room_connections: dict[str, NinjaConnection] = {}
        self.last_random_assigned: NinjaConnection | None = None

        self._io_lock = threading.RLock()
        self._ninjas_lock = threading.Lock()
        self._queue_lock = threading.Lock()
        self._random_lock = threading.Lock()
        self._private_lock = threading.Lock()

        self._stopping = threading.Event()
        self._listener: socket.socket | None = None
        self._reviser: threading.Thread | None = None

    def add_allowed_ninja(self, ip: str) -> None:
        """Allow a ninja server whose contact address is ``ip``."""
        self.allowed_ninja_ips.add(ip)

    def handle_connection(self, server: Any) -> None:
        """Serve one accepted connection according to its greeting."""
        kind, packet = server.receive()
        if kind == MessageKind.HELLO:
            self.handle_client_connection(server, packet)
        elif kind == MessageKind.HELLO_MASTER:
            self.handle_ninja_connection(server, packet)
        else:
            server.send_error(MessageKind.ERR_INVALID_MESSAGE, _UNEXPECTED_TEXT)

    def handle_ninja_connection(self, server: Any, packet: Packet) -> None:
        """Register a ninja server if its versions match and its address is allowed."""
        ip_addr, port, online_version, ninja_version = decode_hello_master(packet)
        if ninja_version != NINJA_VERSION:
            server.send_error(MessageKind.ERR_UPDATE, _NINJA_UPDATE_TEXT)
            return
        if online_version != ONLINE_VERSION:
            server.send_error(MessageKind.ERR_UPDATE, _ONLINE_UPDATE_TEXT)
            return
        if ip_addr not in self.allowed_ninja_ips:
            server.send_error(MessageKind.ERR_UNAUTHORIZED, _NINJA_UNAUTHORIZED_TEXT)
            return
        server.send_accept_ninja()
        log.info("New ninja added from %s:%s", server.remote_address, server.remote_port)
        with self._ninjas_lock:
            self.ninja_connections.append(NinjaConnection(server, ip_addr, port))

    def handle_client_connection(self, server: Any, packet: Packet) -> None:
        """Find a ninja server for the kind of game the client asks for."""
        version, args = decode_hello(packet)
        if version != ONLINE_VERSION:
            server.send_error(MessageKind.ERR_UPDATE, _CLIENT_UPDATE_TEXT)
            return
        if args == ["ninjagame"]:
            self.reserve_ninja_game(server)
        elif args == ["randomgame"]:
            self.reserve_random_game(server)
        elif len(args) == 2 and args[0] == "privateroom":
            self.reserve_private_game(server, args[1])
        else:
            server.send_error(MessageKind.ERR_INVALID_MESSAGE, _UNKNOWN_MODE_TEXT)

    def _query_status(self, ninja: NinjaConnection) -> tuple[int, int, int] | None:
        with self._io_lock:
            ninja.connection.send_how_are_you()
            if not ninja.connection.is_connected():
                log.error("Connection lost with ninja server %s:%d", ninja.ip_addr, ninja.port)
                return None
            kind, packet = ninja.connection.receive()
        if kind != MessageKind.NINJA_STATUS:
            log.error("Ninja server %s:%d sent an unexpected message", ninja.ip_addr, ninja.port)
            return None
        return decode_ninja_status(packet)

    def _least_busy(self, index: int) -> tuple[NinjaConnection, int] | None:
        with self._ninjas_lock:
            ninjas = list(self.ninja_connections)
        best: NinjaConnection | None = None
        lowest = _NO_OCCUPATION
        for ninja in ninjas:
            status = self._query_status(ninja)
            if status is not None and status[index] < lowest:
                lowest = status[index]
                best = ninja
        return None if best is None else (best, lowest)

    def _reserve_on(self, ninja: NinjaConnection, client: Any) -> bool:
        with self._io_lock:
            ninja.connection.send_reserve_ip(client.remote_address or "", client.remote_port or 0)
            kind, _ = ninja.connection.receive()
        return kind == MessageKind.OK_RESERVED

    def _enqueue(self, server: Any) -> None:
        with self._queue_lock:
            self.queued_connections.append(server)
            position = len(self.queued_connections)
        server.send_queued(position)

    def reserve_ninja_game(self, server: Any) -> None:
        """Send the client to the ninja server holding the fewest ninja games."""
        found = self._least_busy(_NINJA_GAMES)
        if found is None:
            server.send_error(MessageKind.ERR_NO_NINJAS, _NO_NINJAS_TEXT)
            return
        ninja, load = found
        if load >= self.max_ninja_games:
            self._enqueue(server)
        elif self._reserve_on(ninja, server):
            server.send_accepted(ninja.ip_addr, ninja.port)
        else:
            server.send_error(MessageKind.ERR_COULDNT_RESERVE, _COULDNT_RESERVE_NINJA_TEXT)

    def reserve_random_game(self, server: Any) -> None:
        """Send the client where the previous random player waits, or to the least busy ninja."""
        with self._random_lock:
            last = self.last_random_assigned
            if last is not None:
                self.last_random_assigned = None
                if self._reserve_on(last, server):
                    server.send_accepted(last.ip_addr, last.port)
                else:
                    server.send_error(MessageKind.ERR_COULDNT_RESERVE, _COULDNT_RESERVE_TEXT)
                return
            found = self._least_busy(_RANDOM_GAMES)
            if found is None:
                server.send_error(MessageKind.ERR_NO_NINJAS, _NO_NINJAS_TEXT)
                return
            ninja, _ = found
            if self._reserve_on(ninja, server):
                self.last_random_assigned = ninja
                server.send_accepted(ninja.ip_addr, ninja.port)
            else:
                server.send_error(MessageKind.ERR_COULDNT_RESERVE, _COULDNT_RESERVE_NINJA_TEXT)

    def reserve_private_game(self, server: Any, room_name: str) -> None:
        """Send the client to the ninja holding ``room_name``, or open it on the least busy one."""
        with self._private_lock:
            ninja = self.private_room_connections.pop(room_name, None)
            if ninja is not None:
                if self._reserve_on(ninja, server):
                    server.send_accepted(ninja.ip_addr, ninja.port)
                else:
                    server.send_error(
                        MessageKind.ERR_COULDNT_RESERVE, _COULDNT_RESERVE_NINJA_TEXT
                    )
                return
            found = self._least_busy(_PRIVATE_GAMES)
            if found is None:
                server.send_error(MessageKind.ERR_NO_NINJAS, _NO_NINJAS_TEXT)
                return
            ninja, _ = found
            if self._reserve_on(ninja, server):
                self.private_room_connections[room_name] = ninja
                server.send_accepted(ninja.ip_addr, ninja.port)
            else:
                server.send_error(MessageKind.ERR_COULDNT_RESERVE, _COULDNT_RESERVE_NINJA_TEXT)

    def _forget(self, ninja: NinjaConnection) -> None:
        with self._ninjas_lock:
            self.ninja_connections = [n for n in self.ninja_connections if n is not ninja]
        with self._random_lock:
            if self.last_random_assigned is ninja:
                self.last_random_assigned = None
        with self._private_lock:
            self.private_room_connections = {
                room: n for room, n in self.private_room_connections.items() if n is not ninja
            }

    def _dequeue_to(self, ninja: NinjaConnection) -> None:
        with self._queue_lock:
            if not self.queued_connections:
                return
            front = self.queued_connections[0]
        if not self._reserve_on(ninja, front):
            log.error("Could not assign a ninja server to the queued client")
            return
        with self._queue_lock:
            if self.queued_connections and self.queued_connections[0] is front:
                self.queued_connections.popleft()
            front.send_accepted(ninja.ip_addr, ninja.port)
            for position, waiting in enumerate(self.queued_connections, start=1):
                waiting.send_queued(position)

    def revise(self) -> int:
        """Drop lost ninja servers and give queued clients to those with room.

        Returns how many ninja servers were dropped.
        """
        with self._ninjas_lock:
            ninjas = list(self.ninja_connections)
        removed = 0
        for ninja in ninjas:
            with self._io_lock:
                ninja.connection.send_how_are_you()
                if not ninja.connection.is_connected():
                    log.error("Connection lost with ninja server %s:%d", ninja.ip_addr, ninja.port)
                    self._forget(ninja)
                    removed += 1
                    continue
                kind, packet = ninja.connection.receive()
            if kind != MessageKind.NINJA_STATUS:
                log.error("Ninja server %s:%d sent an unexpected message", ninja.ip_addr, ninja.port)
                continue
            ninja_games, _, _ = decode_ninja_status(packet)
            if ninja_games < self.max_ninja_games:
                self._dequeue_to(ninja)
        log.info("Current ninja connections: %d (%d removed)", len(self.ninja_connections), removed)
        return removed

    def _reviser_loop(self) -> None:
        while not self._stopping.wait(self.revise_interval):
            self.revise()

    def _accept_loop(self) -> None:
        while not self._stopping.is_set():
            listener = self._listener
            if listener is None:
                break
            try:
                server = ParchisServer.accept(listener)
            except ProtocolError:
                continue
            threading.Thread(target=self.handle_connection, args=(server,), daemon=True).start()

    def start(self) -> None:
        """Listen for ninja servers and clients until stopped."""
        self._stopping.clear()
        try:
            listener = socket.create_server(("", self.port))
        except OSError as exc:
            raise ProtocolError("could not listen to port") from exc
        listener.settimeout(_ACCEPT_TIMEOUT)
        self._listener = listener
        self.port = listener.getsockname()[1]
        log.info("Listening on port %d", self.port)

        self._reviser = threading.Thread(target=self._reviser_loop, daemon=True)
        self._reviser.start()
        self._accept_loop()

    def stop(self) -> None:
        """Stop accepting connections and checking on ninja servers."""
        self._stopping.set()
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.close()
        reviser = self._reviser
        if reviser is not None and reviser is not threading.current_thread():
            reviser.join()


def main(argv: list[str] | None = None) -> int:
    """Run a master server from the command line."""
    parser = argparse.ArgumentParser(
        prog="parchis-master", description="Master server that hands clients out to ninja servers."
    )
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="port to listen on")
    parser.add_argument(
        "--max-ninja-games",
        type=int,
        default=MAX_ALLOWED_NINJA_GAMES,
        help="ninja games a ninja server may hold before clients are queued",
    )
    parser.add_argument("ninjas", nargs="*", metavar="IP", help="allowed ninja contact addresses")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    server = MasterServer(args.port, args.max_ninja_games)
    for ip in args.ninjas:
        server.add_allowed_ninja(ip)
    try:
        server.start()
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()
    return 0