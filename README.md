# parchisgame

`parchisgame` has the building blocks of a two-player Parchis variant. In this variant each player controls two colours, and special items and traps can lie on the board.

The package contains:

- `parchisgame.model`: the value types of the game.
  - `Color`, `BoxType`, `ItemType`, `PieceSize`, `TrapType` and `BoardConfig`.
  - `Box`, `Piece`, `SpecialItem` and `BoardTrap`.
  - `partner_color`, which gives the other colour played by the same player.
- `parchisgame.board`: `Board`, which holds where every piece stands, the special items and the traps. It can be set up from any of the `BoardConfig` layouts.
- `parchisgame.dice`: `Dice`, which holds each player's dice in layers.
  - The regular layer starts as `1, 2, 4, 5, 6, 100`. It refills once every number in it has been spent.
  - A forced layer, added with `force_number`, must be used up first.
- `parchisgame.players`: the automatic players and a reference heuristic.
  - `AIPlayer` picks a random usable dice number and a random piece that can move with it. If no piece can move, it passes the turn with `SKIP_TURN`.
  - `Ninja` is the opponent that game servers run.
  - `evaluate_test` is the reference heuristic.
- `parchisgame.protocol`: the online protocol.
  - `Packet` bodies are framed with a 32-bit big-endian length. Inside a body, integers are 32-bit big-endian and strings are length-prefixed UTF-8.
  - `MessageKind` lists the message codes.
  - `ParchisClient` and `ParchisServer` are the two kinds of connection.
  - The `decode_*` functions read the body of each message.
- `parchisgame.ninja_server`: `NinjaServer`, a game server. It accepts only clients that the master has reserved, and runs the games they ask for.
- `parchisgame.master_server`: `MasterServer`, the matchmaking server, and the `parchis-master` command.

## Installation

```console
pip install .
pip install ".[test]"   # with the test requirements
```

## Using the model

```python
from parchisgame.model import BoardConfig, Color, partner_color
from parchisgame.board import Board
from parchisgame.dice import Dice

board = Board()                                  # every piece at home
print(board.get_piece(Color.GREEN, 0))

grouped = Board(config=BoardConfig.GROUPED)      # three pieces per colour on the track

dice = Dice()
print(dice.get_dice(Color.YELLOW))               # [1, 2, 4, 5, 6, 100]
dice.remove_number(Color.RED, 4)                 # red shares yellow's dice
print(dice.is_available(Color.YELLOW, 4))        # False
print(partner_color(Color.RED))                  # yellow
```

The `Board` methods work as follows:

- `move_piece` puts a piece on a new `Box`.
- `add_trap` places a trap.
- `delete_trap` removes the first trap on a box. It raises `ValueError` if there is none.
- `decrease_piece_turns_left` counts a piece's effect down. It never goes below zero.

Two boards compare equal when their pieces are equal.

## AI players

`AIPlayer.think(game)` returns a `Move` with `color`, `piece_id` and `dice`. `AIPlayer.move(game)` plays that move through `game.move_piece`.

The game object only needs these methods:

- `get_current_player_id`
- `get_available_normal_dices`
- `get_available_pieces`
- `get_current_color`
- `move_piece`

Pass `rng=random.Random(seed)` to make the choices repeatable.

`evaluate_test(state, player)` scores a state for one player:

- it returns `WIN` if that player has won and `LOSE` if the opponent has;
- otherwise it compares both sides, counting for each of the first three pieces of every colour 1 point if the piece is safe and 5 points if it is at the goal;
- the result is the player's points minus the opponent's.

## Online play

`ParchisClient.connect(host, port)` opens a connection. `ParchisServer.accept(listener)` takes one from a listening socket. Both offer a `send_*` method for every message and `receive()`, which returns `(kind, packet)`.

`receive()` handles problems this way:

- A lost connection comes back as `MessageKind.ERROR_DISCONNECTED`.
- An unknown code comes back as a plain integer.

`ProtocolError` is raised in these cases:

- a connect or accept fails;
- `send_game_parameters` or `send_test_message` fails;
- a packet ends early or holds an invalid value.

Other send failures are logged. After `send_hello`, `send_move` and `send_error` fail, the connection is closed.

### Matchmaking server

```console
parchis-master --port 8888 --max-ninja-games 10 127.0.0.1
```

The positional arguments are the contact addresses from which game servers are accepted. The same can be done in code with `MasterServer.add_allowed_ninja`.

A client says `HELLO` with one of three modes:

- **`ninjagame`**: the client goes to the game server holding the fewest ninja games. If that server already holds `--max-ninja-games`, the client is queued. Queued clients are handed out by `revise()`, which also runs every ten seconds.
- **`randomgame`**: the first client goes to the game server with the fewest random matches. The next client is sent to the same server, where the two are paired.
- **`privateroom <name>`**: the first client opens the room on the game server with the fewest private rooms. The next client with that room name is sent to the same server.

### Game server

`NinjaServer(port, contact_ip, game_runner)` follows these steps:

- It registers with the master set by `set_master`.
- It accepts reserved clients.
- It starts games by calling `game_runner(config, player1, player2)`:
  - a remote player is passed as a seat with `name` and `connection`;
  - the built-in opponent is passed as a `Ninja`.

## What this package does not do

- It has no rules engine. Nothing here checks legal moves, applies items or traps, or runs a whole game turn by turn.
- For that reason it has no command that starts a game server. To run `NinjaServer`, supply your own `game_runner`.
- It has no graphical interface.
- It has no command-line client for playing.

## Running the tests

```console
pytest
```