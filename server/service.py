"""
Synchronization service: the RPC handlers in front of the authoritative store.
"""

from common.errors import UnknownMethodError
from common.messages import (
    Method, RegisterArgs, RegisterReply, MoveArgs, MoveReply,
    unregister_args_from_wire,
)
from server.game_state import AuthoritativeStore


class SyncService:
    """
    Decodes request parameters, runs the matching store operation and
    encodes the reply. Validation errors propagate as InvalidArgumentError.
    """

    def __init__(self, store: AuthoritativeStore = None, log=None):
        self.store = store or AuthoritativeStore()
        self._log = log or (lambda msg: None)
        self._handlers = {
            Method.REGISTER_PLAYER: self.register_player,
            Method.UPDATE_PLAYER_STATE: self.update_player_state,
            Method.UNREGISTER_PLAYER: self.unregister_player,
            Method.GET_GAME_STATE: self.get_game_state,
        }

    def dispatch(self, method: str, params):
        """Route one decoded request to its handler and return the result."""
        handler = self._handlers.get(method)
        if handler is None:
            raise UnknownMethodError(f"Unknown method: {method}")
        return handler(params)

    @staticmethod
    def player_of(method: str, params) -> str:
        """The player id a request acts on, or '' if it names none."""
        if method == Method.UNREGISTER_PLAYER:
            return params if isinstance(params, str) else ''
        if method in (Method.REGISTER_PLAYER, Method.UPDATE_PLAYER_STATE) \
                and isinstance(params, dict):
            return str(params.get('PlayerID') or '')
        return ''

    def register_player(self, params) -> dict:
        args = RegisterArgs.from_dict(params)
        ok = self.store.register_player(args.player_id)
        self._log(f"[RPC] RegisterPlayer: {args.player_id}")
        return RegisterReply(ok).to_dict()

    def update_player_state(self, params) -> dict:
        args = MoveArgs.from_dict(params)
        applied = self.store.update_player_state(
            args.player_id, args.row, args.col, args.seq_num
        )
        if applied:
            self._log(f"[RPC] UpdatePlayerState: {args.player_id} -> "
                      f"({args.row},{args.col}) seq={args.seq_num}")
        return MoveReply(applied).to_dict()

    def unregister_player(self, params):
        player_id = unregister_args_from_wire(params)
        self.store.unregister_player(player_id)
        self._log(f"[RPC] UnregisterPlayer: {player_id}")
        return None

    def get_game_state(self, params=None) -> dict:
        return self.store.get_game_state().to_dict()
