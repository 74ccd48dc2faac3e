"""
Client connection management on the server side.
Tracks open connections, the requests each one has in flight, and which
players each one owns, so that players left behind by a dropped
connection can be evicted.
"""

import socket
import threading


class ConnectedClient:
    """Represents a single open connection on the server."""

    def __init__(self, client_id: int, address: tuple, sock=None):
        self.client_id = client_id
        self.address = address              # (ip, port)
        self.sock = sock
        self.requests_handled = 0
        self.send_lock = threading.Lock()   # Replies are written from many threads
        self.workers = []                   # Request threads that may still run

        # Bandwidth tracking
        self.bytes_sent = 0

    def spawn(self, target, *args) -> threading.Thread:
        """Run one request on its own thread and remember it."""
        self.workers = [t for t in self.workers if t.is_alive()]
        worker = threading.Thread(target=target, args=args, daemon=True,
                                  name=f"conn-{self.client_id}-req")
        self.workers.append(worker)
        worker.start()
        return worker

    def join_workers(self, timeout: float = None):
        for worker in self.workers:
            worker.join(timeout)
        self.workers = []

    def close(self):
        """Shut the socket down so a thread blocked in recv() wakes up."""
        if self.sock is None:
            return
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.sock.close()
        except OSError:
            pass


class ClientManager:
    """
    Manages all open connections and player ownership.

    A player is owned by the connection that most recently registered or
    moved it. Ownership is claimed before the store is touched, and eviction
    runs with the manager lock held, so a player re-registered on a new
    connection is never evicted on behalf of the old one.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.clients = {}         # client_id -> ConnectedClient
        self.owners = {}          # player_id -> client_id
        self.next_id = 1

    def add_client(self, address: tuple, sock=None) -> ConnectedClient:
        """Register a new connection."""
        with self._lock:
            cid = self.next_id
            self.next_id += 1
            client = ConnectedClient(cid, address, sock)
            self.clients[cid] = client
        return client

    def claim(self, client_id: int, player_id: str):
        """Make *client_id* the owner of *player_id*."""
        if not player_id:
            return
        with self._lock:
            if client_id in self.clients:
                self.owners[player_id] = client_id

    def release(self, client_id: int, player_id: str):
        """Drop ownership after an explicit unregistration."""
        with self._lock:
            if self.owners.get(player_id) == client_id:
                del self.owners[player_id]

    def owned_by(self, client_id: int) -> list:
        with self._lock:
            return [pid for pid, cid in self.owners.items() if cid == client_id]

    def remove_client(self, client_id: int, evict=None) -> list:
        """
        Remove a connection and evict the players it still owns.

        *evict* is called once per orphaned player id while the manager
        lock is held. Returns the evicted ids.
        """
        with self._lock:
            client = self.clients.pop(client_id, None)
            if client is None:
                return []
            orphaned = [pid for pid, cid in self.owners.items()
                        if cid == client_id]
            for pid in orphaned:
                del self.owners[pid]
                if evict is not None:
                    evict(pid)
        return orphaned

    def all_clients(self):
        """Snapshot of all open connections."""
        with self._lock:
            return list(self.clients.values())

    @property
    def count(self) -> int:
        with self._lock:
            return len(self.clients)
