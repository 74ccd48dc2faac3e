"""
Client side of the RPC transport.

One TCP connection carries calls from several threads at once. Every call
gets its own pending slot keyed by request id, and a reader thread hands
each reply to the slot that is waiting for it, so a slow call never holds
up another. Replies that arrive after their call gave up are discarded.
"""

import itertools
import socket
import threading
import time

from common.config import CALL_TIMEOUT
from common.errors import (
    TransportError, ConnectionClosedError, CallTimeoutError, error_from_wire
)
from common.net import create_client_socket, recv_packet, send_packet
from common.packet import Packet, PacketType


class _PendingCall:
    __slots__ = ('event', 'packet', 'error')

    def __init__(self):
        self.event = threading.Event()
        self.packet = None
        self.error = None


class RpcConnection:
    """A live connection to the game server."""

    def __init__(self, sock: socket.socket, call_timeout: float = CALL_TIMEOUT,
                 metrics=None):
        self.sock = sock
        self.call_timeout = call_timeout
        self.metrics = metrics
        self._ids = itertools.count(1)
        self._pending = {}                 # request_id -> _PendingCall
        self._pending_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._closed = threading.Event()
        self._released = False
        self.late_replies = 0

        self._reader = threading.Thread(target=self._read_loop,
                                        name="rpc-reader", daemon=True)
        self._reader.start()

    @classmethod
    def open(cls, address: tuple, connect_timeout: float = None,
             call_timeout: float = CALL_TIMEOUT, metrics=None) -> 'RpcConnection':
        """Dial the server. Raises ConnectionClosedError on failure."""
        try:
            sock = create_client_socket(address, timeout=connect_timeout)
        except OSError as e:
            raise ConnectionClosedError(f"Connect to {address} failed: {e}") from e
        return cls(sock, call_timeout=call_timeout, metrics=metrics)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def call(self, method: str, params=None, timeout: float = None):
        """
        Send one request and block until its reply arrives.

        Raises a TransportError subclass on communication failure and the
        server's own error (e.g. InvalidArgumentError) if it rejected the call.
        """
        if self.closed:
            raise ConnectionClosedError("Connection is closed")

        timeout = self.call_timeout if timeout is None else timeout
        request_id = next(self._ids) & 0xFFFFFFFF
        pending = _PendingCall()
        with self._pending_lock:
            self._pending[request_id] = pending

        start = time.perf_counter()
        ok = False
        try:
            if self.closed:
                raise ConnectionClosedError("Connection is closed")
            send_packet(self.sock, Packet.request(request_id, method, params),
                        self._send_lock)
            if not pending.event.wait(timeout):
                raise CallTimeoutError(
                    f"{method}: no reply within {timeout:.1f}s",
                    method=method, timeout=timeout
                )
            if pending.error is not None:
                raise pending.error
            pkt = pending.packet
            if pkt.packet_type == PacketType.ERROR:
                body = pkt.body if isinstance(pkt.body, dict) else {}
                raise error_from_wire(body.get('code', 'Internal'),
                                      body.get('message', ''))
            ok = True
            return (pkt.body or {}).get('result') \
                if isinstance(pkt.body, dict) else None
        finally:
            with self._pending_lock:
                self._pending.pop(request_id, None)
            if self.metrics is not None:
                self.metrics.log_rpc(
                    method, (time.perf_counter() - start) * 1000.0, ok
                )

    def _read_loop(self):
        """Deliver replies to their waiting calls until the stream ends."""
        try:
            while not self.closed:
                pkt = recv_packet(self.sock)
                with self._pending_lock:
                    pending = self._pending.get(pkt.request_id)
                if pending is None:
                    self.late_replies += 1
                    continue
                pending.packet = pkt
                pending.event.set()
        except TransportError as e:
            self._closed.set()
            self._fail_all(e)
        finally:
            self._closed.set()

    def _fail_all(self, error: TransportError):
        with self._pending_lock:
            waiting = list(self._pending.values())
        for pending in waiting:
            pending.error = ConnectionClosedError(error.message)
            pending.event.set()

    def close(self):
        """Release the connection. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        self._closed.set()
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.sock.close()
        except OSError:
            pass
        self._fail_all(ConnectionClosedError("Connection closed locally"))
