# sender_utils.py
import ipaddress
import socket
import struct
import threading
from dataclasses import replace

from protocol_constants import DEFAULT_INTERFACE, DEFAULT_TTL, MAX_PAYLOAD_LEN, MAX_SEQUENCE, CHECKSUM_OFFSET
from protocol_codec import MessageType, build_header, encode
from protocol_errors import MulticastJoinFailed, SocketBindFailed, SendFailed, PayloadTooLarge
from metrics_utils import log_message, log_verbose


def check_multicast_group(group):
    try:
        addr = ipaddress.IPv4Address(group)
    except ValueError as exc:
        raise MulticastJoinFailed(f"invalid group address {group!r}") from exc
    if not addr.is_multicast:
        raise MulticastJoinFailed(f"{group} is not a multicast address")
    return str(addr)


def open_send_socket(interface=DEFAULT_INTERFACE, ttl=DEFAULT_TTL, loopback=True):
    """UDP socket configured for multicast sending, bound to an ephemeral port."""
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    except OSError as exc:
        raise SocketBindFailed(f"cannot create socket: {exc}") from exc

    try:
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, ttl)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1 if loopback else 0)
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(interface))
        except OSError as exc:
            raise MulticastJoinFailed(f"interface {interface} unavailable: {exc}") from exc
        sock.bind((interface, 0))
    except MulticastJoinFailed:
        sock.close()
        raise
    except OSError as exc:
        sock.close()
        raise SocketBindFailed(f"cannot bind sender socket on {interface}: {exc}") from exc
    return sock


class FleetSender:
    """
    Stamps and emits fleet messages to one multicast group.

    The socket is opened on construction and owned until close(). Sequence
    numbers start at 0 and wrap at 65536; each send consumes exactly one.
    """

    def __init__(self, group, port:int, sender_id:int, interface=DEFAULT_INTERFACE,
                 ttl=DEFAULT_TTL, loopback=True, metrics=None):
        self.group = check_multicast_group(group)
        self.port = port
        self.sender_id = sender_id
        self.metrics = metrics
        self._sequence = 0
        self._seq_lock = threading.Lock()
        self._closed = False
        self.sock = open_send_socket(interface, ttl, loopback)
        log_message(f"[SENDER] Created multicast sender for {self.group}:{port} with ID {sender_id}")

    @property
    def closed(self):
        return self._closed

    def _next_sequence(self):
        with self._seq_lock:
            seq = self._sequence
            self._sequence = (seq + 1) % MAX_SEQUENCE
            return seq

    def send_message(self, msg_type, payload=b""):
        if self._closed:
            raise SendFailed("sender is closed")
        if len(payload) > MAX_PAYLOAD_LEN:
            raise PayloadTooLarge(f"payload of {len(payload)} bytes exceeds {MAX_PAYLOAD_LEN}")

        header = build_header(msg_type, self._next_sequence(), self.sender_id, len(payload))
        packet = encode(header, payload)
        try:
            self.sock.sendto(packet, (self.group, self.port))
        except OSError as exc:
            if self.metrics:
                self.metrics.log_send_failure()
            raise SendFailed(f"send to {self.group}:{self.port} failed: {exc}") from exc

        header = replace(header, checksum=struct.unpack_from('!H', packet, CHECKSUM_OFFSET)[0])
        if self.metrics:
            self.metrics.log_packet_sent(len(packet))
        log_verbose(f"[SENDER] Sent {header.type_name} seq={header.sequence} ({len(payload)} bytes payload)")
        return header

    def send_heartbeat(self):
        return self.send_message(MessageType.HEARTBEAT)

    def send_data(self, payload):
        return self.send_message(MessageType.DATA, payload)

    def send_control(self, command:str):
        return self.send_message(MessageType.CONTROL, command.encode('utf-8'))

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.sock.close()
        log_message(f"[SENDER] Closed sender {self.sender_id}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
