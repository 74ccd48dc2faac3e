"""
Player state and game snapshots, plus their wire dictionaries.
"""


class PlayerState:
    """One player's position on the grid."""

    __slots__ = ('player_id', 'row', 'col')

    def __init__(self, player_id: str = '', row: int = 0, col: int = 0):
        self.player_id = player_id
        self.row = row
        self.col = col

    def to_dict(self) -> dict:
        return {'ID': self.player_id, 'Linha': self.row, 'Col': self.col}

    @staticmethod
    def from_dict(data: dict) -> 'PlayerState':
        try:
            return PlayerState(str(data['ID']), int(data['Linha']),
                               int(data['Col']))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed player state: {data!r}") from e

    def copy(self) -> 'PlayerState':
        return PlayerState(self.player_id, self.row, self.col)

    def __eq__(self, other):
        if not isinstance(other, PlayerState):
            return NotImplemented
        return (self.player_id, self.row, self.col) == \
               (other.player_id, other.row, other.col)

    def __hash__(self):
        return hash((self.player_id, self.row, self.col))

    def __repr__(self):
        return f"PlayerState({self.player_id!r}, row={self.row}, col={self.col})"


class GameSnapshot:
    """A copy of every player's position taken at one instant."""

    def __init__(self, players: dict = None):
        self.players = players or {}  # player_id -> PlayerState

    def __len__(self):
        return len(self.players)

    def __contains__(self, player_id):
        return player_id in self.players

    def get(self, player_id: str) -> PlayerState:
        return self.players.get(player_id)

    def copy(self) -> 'GameSnapshot':
        return GameSnapshot({pid: p.copy() for pid, p in self.players.items()})

    def to_dict(self) -> dict:
        return {'Players': {pid: p.to_dict() for pid, p in self.players.items()}}

    @staticmethod
    def from_dict(data: dict) -> 'GameSnapshot':
        if not isinstance(data, dict):
            raise ValueError("Snapshot must be a mapping")
        raw = data.get('Players') or {}
        if not isinstance(raw, dict):
            raise ValueError("Snapshot 'Players' must be a mapping")
        players = {}
        for pid, entry in raw.items():
            players[pid] = PlayerState.from_dict(entry)
        return GameSnapshot(players)
