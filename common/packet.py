"""
Framed RPC packet protocol carried over a TCP stream.

Packet Header (13 bytes):
    Protocol ID    (4 bytes) - Magic number 0x47524944 ("GRID")
    Request ID     (4 bytes) - Matches a response to its request
    Packet Type    (1 byte)  - REQUEST / RESPONSE / ERROR
    Payload Length (4 bytes) - Length of the JSON payload that follows
"""

import json
import struct

from common.config import MAX_PAYLOAD_SIZE

PROTOCOL_ID = 0x47524944  # "GRID" in ASCII

# Network byte order: uint32, uint32, uint8, uint32
HEADER_FORMAT = '!I I B I'
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)  # 13 bytes


class PacketType:
    """Packet type identifiers."""
    REQUEST  = 0x01
    RESPONSE = 0x02
    ERROR    = 0x03

    _NAMES = {
        0x01: "REQUEST",
        0x02: "RESPONSE",
        0x03: "ERROR",
    }

    @classmethod
    def name(cls, ptype: int) -> str:
        return cls._NAMES.get(ptype, f"UNKNOWN({ptype:#x})")


class Packet:
    """
    A single framed message.
    The payload is any JSON-serializable value.
    """

    def __init__(self, packet_type: int, request_id: int = 0, body=None):
        self.protocol_id = PROTOCOL_ID
        self.packet_type = packet_type
        self.request_id = request_id & 0xFFFFFFFF
        self.body = body

    @classmethod
    def request(cls, request_id: int, method: str, params=None) -> 'Packet':
        return cls(PacketType.REQUEST, request_id,
                   {'method': method, 'params': params})

    @classmethod
    def response(cls, request_id: int, result=None) -> 'Packet':
        return cls(PacketType.RESPONSE, request_id, {'result': result})

    @classmethod
    def error(cls, request_id: int, code: str, message: str) -> 'Packet':
        return cls(PacketType.ERROR, request_id,
                   {'code': code, 'message': message})

    def serialize(self) -> bytes:
        """Serialize packet to bytes for transmission."""
        payload = json.dumps(self.body, separators=(',', ':')).encode('utf-8')
        if len(payload) > MAX_PAYLOAD_SIZE:
            raise ValueError(f"Payload too large: {len(payload)} bytes")
        header = struct.pack(
            HEADER_FORMAT,
            self.protocol_id,
            self.request_id,
            self.packet_type,
            len(payload)
        )
        return header + payload

    @staticmethod
    def parse_header(header: bytes) -> tuple:
        """Validate a header and return (request_id, packet_type, payload_length)."""
        if len(header) < HEADER_SIZE:
            raise ValueError(f"Header too short: {len(header)} < {HEADER_SIZE}")

        proto_id, req_id, ptype, plen = struct.unpack(
            HEADER_FORMAT, header[:HEADER_SIZE]
        )

        if proto_id != PROTOCOL_ID:
            raise ValueError(f"Invalid protocol ID: {proto_id:#x}")
        if ptype not in PacketType._NAMES:
            raise ValueError(f"Invalid packet type: {ptype:#x}")
        if plen > MAX_PAYLOAD_SIZE:
            raise ValueError(f"Payload too large: {plen} bytes")

        return req_id, ptype, plen

    @staticmethod
    def deserialize(data: bytes) -> 'Packet':
        """Deserialize one complete packet (header + payload)."""
        req_id, ptype, plen = Packet.parse_header(data)

        payload = data[HEADER_SIZE:HEADER_SIZE + plen]
        if len(payload) < plen:
            raise ValueError(f"Payload truncated: got {len(payload)}, expected {plen}")

        try:
            body = json.loads(payload.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Malformed payload: {e}") from e

        return Packet(ptype, req_id, body)

    def __repr__(self):
        return (f"Packet(type={PacketType.name(self.packet_type)}, "
                f"request_id={self.request_id})")
