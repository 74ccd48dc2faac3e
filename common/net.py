"""
Networking utilities: socket creation, packet framing over TCP streams,
network simulation.
"""

import random
import socket
import time

from common.config import (
    DEFAULT_HOST, DEFAULT_PORT, LISTEN_BACKLOG, KEEPALIVE_PROBES
)
from common.errors import ConnectionClosedError, ProtocolError
from common.packet import Packet, HEADER_SIZE


def create_server_socket(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                         backlog: int = LISTEN_BACKLOG) -> socket.socket:
    """Create, bind and listen on a TCP socket for the server."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind((host, port))
    sock.listen(backlog)
    return sock


def create_client_socket(address: tuple, timeout: float = None) -> socket.socket:
    """Open a TCP connection to the server. Raises OSError on failure."""
    sock = socket.create_connection(address, timeout=timeout)
    sock.settimeout(None)
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    return sock


def enable_keepalive(sock: socket.socket, timeout: float,
                     probes: int = KEEPALIVE_PROBES):
    """
    Turn on TCP keepalive so a peer that vanished without closing is
    detected after roughly *timeout* seconds. An idle but live peer is
    never dropped: its kernel answers the probes.
    """
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    idle = max(1, int(timeout / 2))
    interval = max(1, int((timeout - idle) / probes))
    # Not every platform exposes the tuning knobs
    for name, value in (('TCP_KEEPIDLE', idle), ('TCP_KEEPINTVL', interval),
                        ('TCP_KEEPCNT', probes)):
        option = getattr(socket, name, None)
        if option is not None:
            sock.setsockopt(socket.IPPROTO_TCP, option, value)


def parse_address(text: str, default_port: int = DEFAULT_PORT) -> tuple:
    """Split 'host[:port]' into (host, port)."""
    host, sep, port = text.rpartition(':')
    if not sep:
        return (text, default_port)
    if not host:
        host = '127.0.0.1'
    try:
        return (host, int(port))
    except ValueError:
        raise ValueError(f"Invalid port in address: {text!r}") from None


def recv_exact(sock: socket.socket, size: int) -> bytes:
    """Read exactly *size* bytes or raise ConnectionClosedError."""
    chunks = []
    remaining = size
    while remaining > 0:
        try:
            chunk = sock.recv(remaining)
        except OSError as e:
            raise ConnectionClosedError(f"Receive failed: {e}") from e
        if not chunk:
            raise ConnectionClosedError("Connection closed by peer")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b''.join(chunks)


def recv_packet(sock: socket.socket) -> Packet:
    """Block until one full packet has arrived on the stream."""
    header = recv_exact(sock, HEADER_SIZE)
    try:
        _, _, plen = Packet.parse_header(header)
    except ValueError as e:
        # The stream cannot be resynchronized after a bad header
        raise ProtocolError(str(e)) from e
    payload = recv_exact(sock, plen) if plen else b''
    try:
        return Packet.deserialize(header + payload)
    except ValueError as e:
        raise ProtocolError(str(e)) from e


def send_packet(sock: socket.socket, pkt: Packet, lock=None) -> int:
    """
    Write one packet to the stream. Returns bytes written.

    *lock* serializes writers that share the socket. A packet too large
    to frame raises ProtocolError and nothing is written.
    """
    try:
        data = pkt.serialize()
    except ValueError as e:
        raise ProtocolError(str(e)) from e
    try:
        if lock is None:
            sock.sendall(data)
        else:
            with lock:
                sock.sendall(data)
    except OSError as e:
        raise ConnectionClosedError(f"Send failed: {e}") from e
    return len(data)


class NetworkSimulator:
    """
    Wraps packet sending with simulated network conditions:
    latency, jitter and lost messages.

    A lost message on a stream transport means the peer never sees the
    reply, so the caller times out and retransmits. The delay is spent
    before the write lock is taken, so one slow reply never holds up
    another on the same connection.
    """

    def __init__(self, loss_rate: float = 0.0,
                 min_latency: float = 0.0, max_latency: float = 0.0,
                 rng: random.Random = None):
        self.loss_rate = loss_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.rng = rng or random.Random()
        self.dropped = 0

    def should_drop(self) -> bool:
        return self.rng.random() < self.loss_rate

    def delay(self):
        if self.min_latency > 0 or self.max_latency > 0:
            time.sleep(self.rng.uniform(self.min_latency, self.max_latency))

    def send_packet(self, sock: socket.socket, pkt: Packet, lock=None) -> int:
        """Send with simulated conditions. Returns bytes written (0 if dropped)."""
        if self.should_drop():
            self.dropped += 1
            return 0
        self.delay()
        return send_packet(sock, pkt, lock)
