"""
RPC message shapes exchanged between client and server.

Field names on the wire follow the procedure table:
RegisterPlayer(PlayerID) -> OK
UpdatePlayerState(PlayerID, Linha, Col, SeqNum) -> Applied
UnregisterPlayer(<bare PlayerID>) -> null
GetGameState() -> Players
"""

from common.errors import InvalidArgumentError


class Method:
    """Remote procedure names."""
    REGISTER_PLAYER     = 'GameServer.RegisterPlayer'
    UPDATE_PLAYER_STATE = 'GameServer.UpdatePlayerState'
    UNREGISTER_PLAYER   = 'GameServer.UnregisterPlayer'
    GET_GAME_STATE      = 'GameServer.GetGameState'

    ALL = (REGISTER_PLAYER, UPDATE_PLAYER_STATE,
           UNREGISTER_PLAYER, GET_GAME_STATE)


def _require_mapping(params, method: str) -> dict:
    if not isinstance(params, dict):
        raise InvalidArgumentError(f"{method}: arguments must be an object")
    return params


def _require_int(params: dict, key: str) -> int:
    value = params.get(key, 0)
    # bool is an int subclass but never a coordinate
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"{key} must be an integer")
    return value


class RegisterArgs:
    __slots__ = ('player_id',)

    def __init__(self, player_id: str):
        self.player_id = player_id

    def to_dict(self) -> dict:
        return {'PlayerID': self.player_id}

    @staticmethod
    def from_dict(params) -> 'RegisterArgs':
        params = _require_mapping(params, 'RegisterPlayer')
        return RegisterArgs(str(params.get('PlayerID') or ''))


class RegisterReply:
    __slots__ = ('ok',)

    def __init__(self, ok: bool = False):
        self.ok = ok

    def to_dict(self) -> dict:
        return {'OK': self.ok}

    @staticmethod
    def from_dict(result) -> 'RegisterReply':
        return RegisterReply(bool((result or {}).get('OK', False)))


class MoveArgs:
    __slots__ = ('player_id', 'row', 'col', 'seq_num')

    def __init__(self, player_id: str, row: int, col: int, seq_num: int):
        self.player_id = player_id
        self.row = row
        self.col = col
        self.seq_num = seq_num

    def to_dict(self) -> dict:
        return {'PlayerID': self.player_id, 'Linha': self.row,
                'Col': self.col, 'SeqNum': self.seq_num}

    @staticmethod
    def from_dict(params) -> 'MoveArgs':
        params = _require_mapping(params, 'UpdatePlayerState')
        return MoveArgs(str(params.get('PlayerID') or ''),
                        _require_int(params, 'Linha'),
                        _require_int(params, 'Col'),
                        _require_int(params, 'SeqNum'))

    def __repr__(self):
        return (f"MoveArgs({self.player_id!r}, row={self.row}, "
                f"col={self.col}, seq={self.seq_num})")


class MoveReply:
    """Applied=False means the server already had this seq (a duplicate)."""

    __slots__ = ('applied',)

    def __init__(self, applied: bool = False):
        self.applied = applied

    def to_dict(self) -> dict:
        return {'Applied': self.applied}

    @staticmethod
    def from_dict(result) -> 'MoveReply':
        return MoveReply(bool((result or {}).get('Applied', False)))


def unregister_args_from_wire(params) -> str:
    """UnregisterPlayer takes the player id bare, not wrapped in an object."""
    if params is None:
        return ''
    if not isinstance(params, str):
        raise InvalidArgumentError("UnregisterPlayer: argument must be a string")
    return params
