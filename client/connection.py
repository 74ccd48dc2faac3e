"""
Connection manager: gets a player from "no connection" to an active,
registered, polling session, or fails loudly trying.

    DISCONNECTED -> CONNECTING -> CONNECTED -> REGISTERING -> ACTIVE
                        |  ^                       |
                        |  +-- registration failed +
                        v
                      FAILED
"""

import time

from common.config import (
    CONNECT_BASE_DELAY, CONNECT_BACKOFF_FACTOR, CONNECT_MAX_DELAY,
    CONNECT_MAX_ATTEMPTS, MAX_REGISTRATION_ROUNDS, CALL_TIMEOUT
)
from common.errors import (
    TransportError, InvalidArgumentError, RegistrationError,
    ServerUnavailableError
)
from client.client import SessionClient
from client.rpc_client import RpcConnection


class ConnectionState:
    """Connection manager states."""
    DISCONNECTED = 'DISCONNECTED'
    CONNECTING   = 'CONNECTING'
    CONNECTED    = 'CONNECTED'
    REGISTERING  = 'REGISTERING'
    ACTIVE       = 'ACTIVE'
    FAILED       = 'FAILED'


def backoff_delay(attempt: int, base: float = CONNECT_BASE_DELAY,
                  factor: float = CONNECT_BACKOFF_FACTOR,
                  cap: float = CONNECT_MAX_DELAY) -> float:
    """Wait after the *attempt*-th failed try (1-based): base * factor^(n-1), capped."""
    return min(base * (factor ** (attempt - 1)), cap)


class ConnectionManager:
    """
    Establishes the transport with bounded exponential backoff and drives
    registration, reconnecting when registration keeps failing.
    """

    def __init__(self, address: tuple, player_id: str,
                 base_delay: float = CONNECT_BASE_DELAY,
                 backoff_factor: float = CONNECT_BACKOFF_FACTOR,
                 max_delay: float = CONNECT_MAX_DELAY,
                 max_attempts: int = CONNECT_MAX_ATTEMPTS,
                 max_registration_rounds: int = MAX_REGISTRATION_ROUNDS,
                 call_timeout: float = CALL_TIMEOUT,
                 dial=None, session_factory=None, sleep=time.sleep,
                 metrics=None, verbose: bool = True, **session_options):
        self.address = address
        self.player_id = player_id
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.max_registration_rounds = max_registration_rounds
        self.call_timeout = call_timeout
        self.metrics = metrics
        self.verbose = verbose
        self.session_options = session_options
        self._dial = dial or self._default_dial
        self._session_factory = session_factory or self._default_session
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self.history = [self.state]     # Every state entered, in order
        self.connect_attempts = 0
        self.session = None

    def _log(self, msg: str):
        if self.verbose:
            print(msg, flush=True)

    def _set_state(self, state: str):
        if state != self.state:
            self._log(f"[CONN] {self.state} -> {state}")
        self.state = state
        self.history.append(state)

    def _default_dial(self, address: tuple):
        return RpcConnection.open(address, connect_timeout=self.call_timeout,
                                  call_timeout=self.call_timeout,
                                  metrics=self.metrics)

    def _default_session(self, player_id: str, conn) -> SessionClient:
        return SessionClient(player_id, conn, metrics=self.metrics,
                             verbose=self.verbose, **self.session_options)

    def backoff_delay(self, attempt: int) -> float:
        return backoff_delay(attempt, self.base_delay, self.backoff_factor,
                             self.max_delay)

    def connect(self):
        """
        Open a transport connection, backing off between attempts.
        Raises ServerUnavailableError after max_attempts failures.
        """
        self._set_state(ConnectionState.CONNECTING)
        host, port = self.address

        for attempt in range(1, self.max_attempts + 1):
            self.connect_attempts += 1
            try:
                conn = self._dial(self.address)
            except (TransportError, OSError) as e:
                self._log(f"[CONN] Connect to {host}:{port} failed "
                          f"(attempt {attempt}/{self.max_attempts}): {e}")
                if attempt == self.max_attempts:
                    break
                self._sleep(self.backoff_delay(attempt))
                continue

            self._set_state(ConnectionState.CONNECTED)
            self._log(f"[CONN] Connected to {host}:{port}")
            return conn

        self._set_state(ConnectionState.FAILED)
        raise ServerUnavailableError(
            f"Server {host}:{port} unreachable after {self.max_attempts} attempts",
            address=self.address, attempts=self.max_attempts
        )

    def start_session(self) -> SessionClient:
        """
        Connect, register and start polling. Returns the active session.

        Raises ServerUnavailableError or RegistrationError when the client
        cannot proceed; both are fatal to the caller.
        """
        for round_no in range(1, self.max_registration_rounds + 1):
            conn = self.connect()

            self._set_state(ConnectionState.REGISTERING)
            session = self._session_factory(self.player_id, conn)
            try:
                session.register()
            except RegistrationError as e:
                self._log(f"[CONN] {e.message}; reconnecting "
                          f"(round {round_no}/{self.max_registration_rounds})")
                conn.close()
                continue
            except InvalidArgumentError:
                conn.close()
                self._set_state(ConnectionState.FAILED)
                raise

            self._set_state(ConnectionState.ACTIVE)
            session.start_polling()
            self.session = session
            return session

        self._set_state(ConnectionState.FAILED)
        raise RegistrationError(
            f"Could not register {self.player_id} on "
            f"{self.max_registration_rounds} fresh connections"
        )

    def close(self):
        """Close the active session (unregister, then disconnect)."""
        if self.session is not None:
            self.session.close()
            self.session = None
        if self.state != ConnectionState.FAILED:
            self._set_state(ConnectionState.DISCONNECTED)
