# protocol_codec.py
import struct
import binascii
import time
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Tuple, Union

from protocol_constants import (
    HEADER_FMT, HEADER_SIZE, CHECKSUM_OFFSET, MAGIC, VERSION, SUPPORTED_VERSIONS,
    MSG_HEARTBEAT, MSG_DATA, MSG_CONTROL, MAX_PAYLOAD_LEN,
)
from protocol_errors import (
    InvalidMagic, UnsupportedVersion, ChecksumMismatch, TruncatedMessage,
    UnknownMessageType, PayloadLengthMismatch, PayloadTooLarge,
)

_HEADER = struct.Struct(HEADER_FMT)


class MessageType(IntEnum):
    HEARTBEAT = MSG_HEARTBEAT
    DATA = MSG_DATA
    CONTROL = MSG_CONTROL


@dataclass(frozen=True)
class MessageHeader:
    """Decoded fleet header. msg_type is a raw int only when unknown tags are allowed."""
    msg_type: Union[MessageType, int]
    sequence: int
    timestamp: int
    sender_id: int
    payload_len: int = 0
    checksum: int = 0
    magic: int = MAGIC
    version: int = VERSION

    @property
    def is_known_type(self) -> bool:
        return isinstance(self.msg_type, MessageType)

    @property
    def type_name(self) -> str:
        if self.is_known_type:
            return self.msg_type.name
        return f"UNKNOWN({self.msg_type})"


def current_time_ms():
    return int(time.time() * 1000)


def compute_checksum(header_bytes) -> int:
    """CRC-16/CCITT over the header bytes that precede the checksum field."""
    return binascii.crc_hqx(header_bytes[:CHECKSUM_OFFSET], 0xFFFF)


def build_header(msg_type, sequence:int, sender_id:int, payload_len:int=0, timestamp:int=None, version:int=VERSION) -> MessageHeader:
    if timestamp is None:
        timestamp = current_time_ms()
    return MessageHeader(
        msg_type=MessageType(msg_type),
        sequence=sequence,
        timestamp=timestamp,
        sender_id=sender_id,
        payload_len=payload_len,
        version=version,
    )


def encode(header: MessageHeader, payload=b"") -> bytes:
    """
    Lay out the 24-byte header in network byte order followed by the payload.

    payload_len and checksum are always recomputed; the values carried on
    `header` for those two fields are ignored.
    """
    payload_len = len(payload)
    if payload_len > MAX_PAYLOAD_LEN:
        raise PayloadTooLarge(f"payload of {payload_len} bytes exceeds {MAX_PAYLOAD_LEN}")

    packet = bytearray(HEADER_SIZE + payload_len)
    try:
        _HEADER.pack_into(packet, 0, header.magic, header.version, int(header.msg_type),
                          header.sequence, header.timestamp, header.sender_id, payload_len, 0)
    except struct.error as exc:
        raise ValueError(f"header field out of range: {exc}") from exc

    checksum = compute_checksum(packet)
    struct.pack_into('!H', packet, CHECKSUM_OFFSET, checksum)
    packet[HEADER_SIZE:] = payload
    return bytes(packet)


def decode(data, allow_unknown_types:bool=False) -> Tuple[MessageHeader, memoryview]:
    """
    Validate a datagram and return (header, payload).

    The payload is a memoryview over `data`; it stays valid only as long as
    the caller does not reuse the underlying buffer.
    """
    view = memoryview(data)
    if len(view) < HEADER_SIZE:
        raise TruncatedMessage(f"{len(view)} bytes is shorter than the {HEADER_SIZE}-byte header")

    magic, version, msg_type, sequence, timestamp, sender_id, payload_len, checksum = _HEADER.unpack_from(view, 0)

    if magic != MAGIC:
        raise InvalidMagic(f"bad magic 0x{magic:08x}")
    expected = compute_checksum(view)
    if checksum != expected:
        raise ChecksumMismatch(f"checksum 0x{checksum:04x} != 0x{expected:04x}")
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersion(f"version {version}")

    try:
        msg_type = MessageType(msg_type)
    except ValueError:
        if not allow_unknown_types:
            raise UnknownMessageType(f"msg_type {msg_type}") from None

    end = HEADER_SIZE + payload_len
    if len(view) < end:
        raise TruncatedMessage(f"payload_len {payload_len} but only {len(view) - HEADER_SIZE} bytes follow")
    if len(view) > end:
        raise PayloadLengthMismatch(f"payload_len {payload_len} but {len(view) - HEADER_SIZE} bytes follow")

    header = MessageHeader(
        msg_type=msg_type,
        sequence=sequence,
        timestamp=timestamp,
        sender_id=sender_id,
        payload_len=payload_len,
        checksum=checksum,
        magic=magic,
        version=version,
    )
    return header, view[HEADER_SIZE:end]


def with_checksum(header: MessageHeader, payload_len:int) -> MessageHeader:
    """Return `header` with payload_len set and checksum filled in as encode() would."""
    packed = _HEADER.pack(header.magic, header.version, int(header.msg_type), header.sequence,
                          header.timestamp, header.sender_id, payload_len, 0)
    return replace(header, payload_len=payload_len, checksum=compute_checksum(packed))
