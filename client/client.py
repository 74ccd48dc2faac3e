"""
Session client: registers a player, submits moves exactly once, and keeps
a local copy of every player's position fresh with a background poller.
"""

import threading
import time

from common.config import (
    REGISTER_MAX_RETRIES, REGISTER_RETRY_INTERVAL,
    MOVE_MAX_RETRIES, MOVE_RETRY_INTERVAL,
    POLL_INTERVAL, POLL_FAILURE_BACKOFF, POLL_MAX_FAILURES
)
from common.errors import (
    GridSyncError, InvalidArgumentError, TransportError, ProtocolError,
    RegistrationError
)
from common.messages import (
    Method, RegisterArgs, RegisterReply, MoveArgs, MoveReply
)
from common.snapshot import GameSnapshot


class SessionClient:
    """
    One player's session on top of a live RPC connection.

    The sequence counter and the remote-player cache are guarded by one
    mutex. Moves are numbered before they are sent; a move that has to be
    resent after a communication failure keeps its number, so the server
    applies it at most once.
    """

    def __init__(self, player_id: str, conn,
                 register_retries: int = REGISTER_MAX_RETRIES,
                 register_interval: float = REGISTER_RETRY_INTERVAL,
                 move_retries: int = MOVE_MAX_RETRIES,
                 move_interval: float = MOVE_RETRY_INTERVAL,
                 poll_interval: float = POLL_INTERVAL,
                 poll_failure_backoff: float = POLL_FAILURE_BACKOFF,
                 poll_max_failures: int = POLL_MAX_FAILURES,
                 metrics=None, verbose: bool = True):
        self.player_id = player_id
        self.conn = conn
        self.register_retries = register_retries
        self.register_interval = register_interval
        self.move_retries = move_retries
        self.move_interval = move_interval
        self.poll_interval = poll_interval
        self.poll_failure_backoff = poll_failure_backoff
        self.poll_max_failures = poll_max_failures
        self.metrics = metrics
        self.verbose = verbose

        self._lock = threading.Lock()
        self._seq = 0
        self._remote = GameSnapshot()

        # Polling
        self._stop = threading.Event()
        self._poll_thread = None
        self.poll_failures = 0          # Current consecutive failures
        self.desynchronized = False     # Poller gave up for good
        self.last_poll_time = None

        self.closed = False

    def _log(self, msg: str):
        if self.verbose:
            print(msg, flush=True)

    # -- registration ------------------------------------------------------

    def register(self) -> bool:
        """
        Register the player, retrying a bounded number of times.
        Raises RegistrationError once retries are exhausted.
        """
        args = RegisterArgs(self.player_id).to_dict()
        last_error = None

        for attempt in range(1, self.register_retries + 1):
            try:
                reply = RegisterReply.from_dict(
                    self.conn.call(Method.REGISTER_PLAYER, args)
                )
            except InvalidArgumentError:
                raise
            except GridSyncError as e:
                last_error = e.message
            else:
                if reply.ok:
                    self._log(f"[CLIENT] Player {self.player_id} registered")
                    return True
                last_error = "server rejected registration"

            self._log(f"[CLIENT] Registration failed "
                      f"(attempt {attempt}/{self.register_retries}): {last_error}")
            if self.metrics is not None:
                self.metrics.log_retry(Method.REGISTER_PLAYER, attempt)
            if attempt < self.register_retries and self._stop.wait(self.register_interval):
                break

        raise RegistrationError(
            f"Could not register {self.player_id} after "
            f"{self.register_retries} attempts: {last_error}"
        )

    # -- moves -------------------------------------------------------------

    def next_sequence(self) -> int:
        """Allocate the next move sequence number."""
        with self._lock:
            self._seq += 1
            return self._seq

    @property
    def sequence(self) -> int:
        with self._lock:
            return self._seq

    def update_state(self, row: int, col: int) -> bool:
        """
        Submit a move. Returns True once the server has the move (applied
        now or already applied earlier), False if the move was given up on.
        """
        if self.closed:
            return False

        seq = self.next_sequence()
        args = MoveArgs(self.player_id, row, col, seq).to_dict()

        for attempt in range(1, self.move_retries + 1):
            try:
                reply = MoveReply.from_dict(
                    self.conn.call(Method.UPDATE_PLAYER_STATE, args)
                )
            except TransportError as e:
                # Resend the same tuple, never a new sequence number
                self._log(f"[CLIENT] Move seq={seq} failed "
                          f"(attempt {attempt}/{self.move_retries}): {e.message}")
                if self.metrics is not None:
                    self.metrics.log_retry(Method.UPDATE_PLAYER_STATE, attempt)
                if attempt < self.move_retries and self._stop.wait(self.move_interval):
                    break
                continue
            except GridSyncError as e:
                self._log(f"[CLIENT] WARNING: move seq={seq} rejected: {e.message}")
                return False

            if not reply.applied and self.metrics is not None:
                self.metrics.log_duplicate(seq)
            return True

        self._log(f"[CLIENT] WARNING: giving up on move seq={seq} "
                  f"after {self.move_retries} attempts")
        if self.metrics is not None:
            self.metrics.log_dropped_move(seq)
        return False

    # -- polling -----------------------------------------------------------

    def poll_once(self) -> GameSnapshot:
        """Fetch a snapshot and replace the local cache with it."""
        result = self.conn.call(Method.GET_GAME_STATE, None)
        try:
            snapshot = GameSnapshot.from_dict(result)
        except ValueError as e:
            raise ProtocolError(f"Bad snapshot: {e}") from e
        with self._lock:
            self._remote = snapshot
        return snapshot

    def _poll_loop(self):
        failures = 0
        while not self._stop.is_set():
            try:
                self.poll_once()
            except GridSyncError as e:
                failures += 1
                self.poll_failures = failures
                if self.metrics is not None:
                    self.metrics.log_poll_failure(failures)
                self._log(f"[POLL] Snapshot failed "
                          f"({failures}/{self.poll_max_failures}): {e.message}")
                if failures >= self.poll_max_failures:
                    self.desynchronized = True
                    self._log("[POLL] Too many failures, polling stopped; "
                              "remote players will no longer update")
                    return
                if self._stop.wait(self.poll_failure_backoff * failures):
                    return
                continue

            if failures:
                self._log(f"[POLL] Recovered after {failures} failure(s)")
            failures = 0
            self.poll_failures = 0
            self.last_poll_time = time.time()
            self._stop.wait(self.poll_interval)

    def start_polling(self):
        """Start the background poller (no-op if it is already running)."""
        if self._poll_thread is not None and self._poll_thread.is_alive():
            return
        self._stop.clear()
        self._poll_thread = threading.Thread(
            target=self._poll_loop, name=f"poll-{self.player_id}", daemon=True
        )
        self._poll_thread.start()

    def stop_polling(self, timeout: float = 2.0):
        self._stop.set()
        thread = self._poll_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    @property
    def polling(self) -> bool:
        return self._poll_thread is not None and self._poll_thread.is_alive()

    def snapshot(self) -> GameSnapshot:
        """Copy of the last snapshot received."""
        with self._lock:
            return self._remote.copy()

    def get_remote_players(self, include_self: bool = False) -> dict:
        """player_id -> PlayerState copies from the last snapshot."""
        with self._lock:
            return {pid: p.copy() for pid, p in self._remote.players.items()
                    if include_self or pid != self.player_id}

    # -- shutdown ----------------------------------------------------------

    def close(self):
        """Stop polling, tell the server we left, then drop the connection."""
        if self.closed:
            return
        self.closed = True
        self.stop_polling()
        try:
            self.conn.call(Method.UNREGISTER_PLAYER, self.player_id)
            self._log(f"[CLIENT] Player {self.player_id} unregistered")
        except GridSyncError as e:
            self._log(f"[CLIENT] Could not unregister {self.player_id}: {e.message}")
        finally:
            self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
