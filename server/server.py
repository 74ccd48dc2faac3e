"""
Main game server: authoritative, connection-oriented RPC over TCP.

Handles:
- Client connections/disconnections (one reader thread per connection)
- Request dispatch to the synchronization service, one thread per request
- Eviction of players left behind by closed or dead connections
- Periodic statistics
"""

import socket
import threading
import time

from common.config import (
    DEFAULT_HOST, DEFAULT_PORT, CLIENT_TIMEOUT, ACCEPT_POLL_INTERVAL,
    SERVER_METRICS_WINDOW
)
from common.errors import GridSyncError, ProtocolError, TransportError
from common.messages import Method
from common.metrics_logger import MetricsLogger
from common.net import (
    create_server_socket, enable_keepalive, recv_packet, send_packet,
    NetworkSimulator
)
from common.packet import Packet, PacketType
from server.client_manager import ClientManager
from server.game_state import AuthoritativeStore
from server.service import SyncService


class GameServer:
    """
    Authoritative game server.
    Accepts connections, reads each on its own thread, and handles every
    request on a thread of its own through the synchronization service, so
    a slow reply never delays another call on the same connection.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                 client_timeout: float = CLIENT_TIMEOUT,
                 loss_sim: float = 0.0, latency_sim: float = 0.0,
                 verbose: bool = True, save_metrics: bool = False):
        self.host = host
        self.client_timeout = client_timeout
        self.running = False
        self.verbose = verbose
        self.save_metrics = save_metrics

        # Socket (port 0 picks a free port)
        self.sock = create_server_socket(host, port)
        self.port = self.sock.getsockname()[1]

        # Optional network simulation on replies
        self.net_sim = None
        if loss_sim > 0 or latency_sim > 0:
            self.net_sim = NetworkSimulator(
                loss_rate=loss_sim,
                min_latency=latency_sim * 0.5,
                max_latency=latency_sim * 1.5
            )

        # Core systems
        self.store = AuthoritativeStore()
        self.service = SyncService(self.store, log=self._log)
        self.client_mgr = ClientManager()
        self.metrics = MetricsLogger(max_samples=SERVER_METRICS_WINDOW)

        # Statistics
        self.total_requests = 0
        self.total_bytes_sent = 0
        self._stats_lock = threading.Lock()
        self._thread = None

    def _log(self, msg: str):
        """Print a message if verbose mode is enabled."""
        if self.verbose:
            print(msg, flush=True)

    def _send(self, client, pkt: Packet):
        """Send a reply through the socket or network simulator."""
        try:
            if self.net_sim:
                sent = self.net_sim.send_packet(client.sock, pkt, client.send_lock)
            else:
                sent = send_packet(client.sock, pkt, client.send_lock)
        except ProtocolError as e:
            if pkt.packet_type == PacketType.ERROR:
                return
            # Reply cannot be framed (e.g. an oversized snapshot)
            self._log(f"[SERVER] Reply to connection {client.client_id} "
                      f"dropped: {e.message}")
            self._send(client, Packet(PacketType.ERROR, pkt.request_id, e.to_dict()))
            return
        except TransportError:
            # The reader notices the broken connection on its next read
            return
        with self._stats_lock:
            client.bytes_sent += sent
            self.total_bytes_sent += sent

    def _accept(self):
        """Accept one pending connection and start its handler thread."""
        try:
            conn, addr = self.sock.accept()
        except socket.timeout:
            return
        except OSError:
            if self.running:
                self._log("[SERVER] Accept failed")
            return

        conn.settimeout(None)
        conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        enable_keepalive(conn, self.client_timeout)
        client = self.client_mgr.add_client(addr, conn)
        self._log(f"[SERVER] Connection {client.client_id} from {addr}")
        threading.Thread(
            target=self._serve_client, args=(client,),
            name=f"conn-{client.client_id}", daemon=True
        ).start()

    def _serve_client(self, client):
        """Read requests until the connection goes away."""
        reason = "closed"
        try:
            while self.running:
                try:
                    pkt = recv_packet(client.sock)
                except TransportError as e:
                    reason = e.message
                    break
                self.total_requests += 1
                client.requests_handled += 1
                client.spawn(self._handle_packet, client, pkt)
        finally:
            # In-flight requests settle before their players are evicted
            client.join_workers(self.client_timeout)
            evicted = self.client_mgr.remove_client(
                client.client_id, evict=self.store.unregister_player
            )
            client.close()
            self._log(f"[SERVER] Connection {client.client_id} ended ({reason})")
            for pid in evicted:
                self._log(f"[SERVER] Evicted player {pid} "
                          f"(connection {client.client_id} gone)")

    def _handle_packet(self, client, pkt: Packet):
        """Route an incoming request to the synchronization service."""
        if pkt.packet_type != PacketType.REQUEST or not isinstance(pkt.body, dict):
            self._send(client, Packet.error(
                pkt.request_id, 'Protocol', 'Expected a request object'
            ))
            return

        method = pkt.body.get('method')
        params = pkt.body.get('params')
        player_id = SyncService.player_of(method, params)

        # Claim before touching the store; see ClientManager
        if method in (Method.REGISTER_PLAYER, Method.UPDATE_PLAYER_STATE):
            self.client_mgr.claim(client.client_id, player_id)

        start = time.perf_counter()
        try:
            result = self.service.dispatch(method, params)
        except GridSyncError as e:
            reply = Packet(PacketType.ERROR, pkt.request_id, e.to_dict())
        except Exception as e:
            self._log(f"[SERVER] Handler {method} failed: {e!r}")
            reply = Packet.error(pkt.request_id, 'Internal', str(e))
        else:
            reply = Packet.response(pkt.request_id, result)
            if method == Method.UNREGISTER_PLAYER:
                self.client_mgr.release(client.client_id, player_id)
        self.metrics.log_handler_time(
            method or '', (time.perf_counter() - start) * 1000.0
        )

        self._send(client, reply)

    def run(self):
        """Main accept loop with periodic housekeeping."""
        self.running = True
        self.sock.settimeout(ACCEPT_POLL_INTERVAL)
        self._log(f"[SERVER] Listening on {self.host}:{self.port}")

        last_stats_time = time.perf_counter()
        stats_interval = 5.0  # Print stats every 5 seconds

        try:
            while self.running:
                self._accept()

                now = time.perf_counter()
                if now - last_stats_time >= stats_interval:
                    players = len(self.store.get_game_state())
                    self._log(f"[SERVER] Connections: {self.client_mgr.count} | "
                              f"Players: {players} | "
                              f"Requests: {self.total_requests} | "
                              f"Sent: {self.total_bytes_sent / 1024:.1f} KB")
                    last_stats_time = now

        except KeyboardInterrupt:
            self._log("\n[SERVER] Shutting down...")
        finally:
            self.running = False
            try:
                self.sock.close()
            except OSError:
                pass
            for client in self.client_mgr.all_clients():
                client.close()
            if self.save_metrics:
                self.metrics.save('server_metrics.json')
            summary = self.metrics.get_summary()
            if summary:
                self._log(f"[SERVER] Metrics summary: {summary}")

    def start(self) -> threading.Thread:
        """Run the server on a background thread (used by tests and tools)."""
        self.running = True
        self._thread = threading.Thread(target=self.run, name="server",
                                        daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float = 2.0):
        self.running = False
        if self._thread is not None:
            self._thread.join(timeout)


def main():
    """Entry point for running the server standalone."""
    import argparse
    parser = argparse.ArgumentParser(description='Grid Sync Server')
    parser.add_argument('--host', default=DEFAULT_HOST, help='Bind address')
    parser.add_argument('--port', type=int, default=DEFAULT_PORT, help='Bind port')
    parser.add_argument('--client-timeout', type=float, default=CLIENT_TIMEOUT,
                        help='Seconds before an unresponsive peer is dropped')
    parser.add_argument('--loss', type=float, default=0.0,
                        help='Simulated reply loss rate (0.0-1.0)')
    parser.add_argument('--latency', type=float, default=0.0,
                        help='Simulated base reply latency (seconds)')
    parser.add_argument('--metrics', action='store_true',
                        help='Save handler metrics on shutdown')
    parser.add_argument('--quiet', action='store_true',
                        help='Suppress per-request logging')
    args = parser.parse_args()

    server = GameServer(
        host=args.host, port=args.port, client_timeout=args.client_timeout,
        loss_sim=args.loss, latency_sim=args.latency,
        verbose=not args.quiet, save_metrics=args.metrics
    )
    server.run()


if __name__ == '__main__':
    main()
