"""
Unit tests for packet framing and stream helpers.
"""

import socket
import struct
import threading
import unittest
from unittest import mock

from common.errors import ConnectionClosedError, ProtocolError
from common.net import enable_keepalive, parse_address, recv_packet, send_packet
from common.packet import (
    Packet, PacketType, HEADER_FORMAT, HEADER_SIZE, PROTOCOL_ID
)


class TestPacketSerialization(unittest.TestCase):
    """Test the framed packet protocol."""

    def test_request_layout(self):
        """A request carries method and params in its JSON body."""
        pkt = Packet.request(7, 'GameServer.RegisterPlayer', {'PlayerID': 'alice'})
        restored = Packet.deserialize(pkt.serialize())

        self.assertEqual(restored.packet_type, PacketType.REQUEST)
        self.assertEqual(restored.request_id, 7)
        self.assertEqual(restored.body['method'], 'GameServer.RegisterPlayer')
        self.assertEqual(restored.body['params'], {'PlayerID': 'alice'})

    def test_error_packet(self):
        pkt = Packet.error(3, 'InvalidArgument', 'PlayerID must not be empty')
        restored = Packet.deserialize(pkt.serialize())
        self.assertEqual(restored.packet_type, PacketType.ERROR)
        self.assertEqual(restored.body['code'], 'InvalidArgument')

    def test_null_result(self):
        """UnregisterPlayer replies with an empty result."""
        restored = Packet.deserialize(Packet.response(9, None).serialize())
        self.assertEqual(restored.body, {'result': None})

    def test_header_fields(self):
        data = Packet.response(0xDEADBEEF, {'OK': True}).serialize()
        proto, req_id, ptype, plen = struct.unpack(HEADER_FORMAT, data[:HEADER_SIZE])
        self.assertEqual(proto, PROTOCOL_ID)
        self.assertEqual(req_id, 0xDEADBEEF)
        self.assertEqual(ptype, PacketType.RESPONSE)
        self.assertEqual(plen, len(data) - HEADER_SIZE)

    def test_invalid_protocol_id(self):
        """Invalid protocol ID should raise ValueError."""
        data = b'\x00\x00\x00\x00' + b'\x00' * 20
        with self.assertRaises(ValueError):
            Packet.deserialize(data)

    def test_invalid_packet_type(self):
        data = struct.pack(HEADER_FORMAT, PROTOCOL_ID, 1, 0x7F, 0)
        with self.assertRaises(ValueError):
            Packet.deserialize(data)

    def test_too_short(self):
        """Truncated data should raise ValueError."""
        with self.assertRaises(ValueError):
            Packet.deserialize(b'\x01\x02')

    def test_truncated_payload(self):
        data = Packet.response(1, {'Applied': True}).serialize()
        with self.assertRaises(ValueError):
            Packet.deserialize(data[:-3])

    def test_oversized_length_rejected(self):
        data = struct.pack(HEADER_FORMAT, PROTOCOL_ID, 1,
                           PacketType.REQUEST, 0xFFFFFFFF)
        with self.assertRaises(ValueError):
            Packet.parse_header(data)

    def test_malformed_json(self):
        payload = b'{not json'
        data = struct.pack(HEADER_FORMAT, PROTOCOL_ID, 1,
                           PacketType.REQUEST, len(payload)) + payload
        with self.assertRaises(ValueError):
            Packet.deserialize(data)

    def test_header_size(self):
        """Header should be exactly 13 bytes."""
        self.assertEqual(HEADER_SIZE, 13)

    def test_protocol_id_value(self):
        """Protocol ID should be 'GRID' in ASCII."""
        self.assertEqual(PROTOCOL_ID.to_bytes(4, 'big'), b'GRID')


class TestStreamFraming(unittest.TestCase):
    """Packets survive being split and coalesced by the stream."""

    def setUp(self):
        self.a, self.b = socket.socketpair()

    def tearDown(self):
        self.a.close()
        self.b.close()

    def test_back_to_back_packets(self):
        send_packet(self.a, Packet.request(1, 'm', {'x': 1}))
        send_packet(self.a, Packet.request(2, 'm', {'x': 2}))
        first = recv_packet(self.b)
        second = recv_packet(self.b)
        self.assertEqual((first.request_id, second.request_id), (1, 2))
        self.assertEqual(second.body['params'], {'x': 2})

    def test_packet_split_across_writes(self):
        data = Packet.request(5, 'GameServer.GetGameState').serialize()

        def dribble():
            for i in range(len(data)):
                self.a.sendall(data[i:i + 1])

        writer = threading.Thread(target=dribble)
        writer.start()
        pkt = recv_packet(self.b)
        writer.join()
        self.assertEqual(pkt.request_id, 5)
        self.assertEqual(pkt.body['method'], 'GameServer.GetGameState')

    def test_peer_close_mid_packet(self):
        data = Packet.request(1, 'm').serialize()
        self.a.sendall(data[:HEADER_SIZE + 2])
        self.a.close()
        with self.assertRaises(ConnectionClosedError):
            recv_packet(self.b)

    def test_garbage_header(self):
        self.a.sendall(b'X' * HEADER_SIZE)
        with self.assertRaises(ProtocolError):
            recv_packet(self.b)

    def test_oversized_packet_is_not_written(self):
        with mock.patch('common.packet.MAX_PAYLOAD_SIZE', 64):
            with self.assertRaises(ProtocolError):
                send_packet(self.a, Packet.response(1, {'Players': 'x' * 200}))
            send_packet(self.a, Packet.response(2, None))
        # The stream is still in sync: the small packet is the first one seen
        self.assertEqual(recv_packet(self.b).request_id, 2)


class TestKeepalive(unittest.TestCase):

    def test_keepalive_options(self):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            enable_keepalive(sock, 30.0, probes=3)
            self.assertTrue(sock.getsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE))
            if hasattr(socket, 'TCP_KEEPIDLE'):
                self.assertEqual(
                    sock.getsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE), 15)
            if hasattr(socket, 'TCP_KEEPCNT'):
                self.assertEqual(
                    sock.getsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPCNT), 3)
        finally:
            sock.close()

    def test_short_timeout_rounds_up_to_one_second(self):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            enable_keepalive(sock, 0.3)
            if hasattr(socket, 'TCP_KEEPINTVL'):
                self.assertEqual(
                    sock.getsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPINTVL), 1)
        finally:
            sock.close()


class TestParseAddress(unittest.TestCase):

    def test_host_and_port(self):
        self.assertEqual(parse_address('example.org:4321'), ('example.org', 4321))

    def test_default_port(self):
        self.assertEqual(parse_address('localhost'), ('localhost', 1234))

    def test_bad_port(self):
        with self.assertRaises(ValueError):
            parse_address('localhost:abc')


if __name__ == '__main__':
    unittest.main()
