"""
Authoritative player store owned by the server.
Clients only ever see copies of what lives here.
"""

import threading

from common.errors import InvalidArgumentError
from common.snapshot import PlayerState, GameSnapshot


class AuthoritativeStore:
    """
    The single source of truth for player positions.

    Keeps two mappings that always change together under one lock:
    the current position per player and the last accepted move sequence
    number per player. The lock is held for one operation at a time,
    never across operations.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._players = {}     # player_id -> PlayerState
        self._processed = {}   # player_id -> last accepted seq

    def register_player(self, player_id: str) -> bool:
        """Add a player at the origin. Re-registering is a no-op."""
        if not player_id:
            raise InvalidArgumentError("PlayerID must not be empty")
        with self._lock:
            if player_id not in self._players:
                self._players[player_id] = PlayerState(player_id, 0, 0)
        return True

    def update_player_state(self, player_id: str, row: int, col: int,
                            seq: int) -> bool:
        """
        Apply a move at most once.

        Returns True when the move was applied, False when ``seq`` is not
        newer than the last accepted one (a retransmission or stale retry).
        """
        if not player_id:
            raise InvalidArgumentError("PlayerID must not be empty")
        with self._lock:
            if seq <= self._processed.get(player_id, 0):
                return False
            self._players[player_id] = PlayerState(player_id, row, col)
            self._processed[player_id] = seq
            return True

    def unregister_player(self, player_id: str):
        """Remove a player's position. The seq watermark is kept."""
        with self._lock:
            self._players.pop(player_id, None)

    def get_game_state(self) -> GameSnapshot:
        """Return an independent copy of every player's position."""
        with self._lock:
            players = {pid: p.copy() for pid, p in self._players.items()}
        return GameSnapshot(players)

