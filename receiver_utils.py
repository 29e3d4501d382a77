# receiver_utils.py
import socket
import struct
import threading

from protocol_constants import BUFFER_SIZE, DEFAULT_INTERFACE, HEADER_SIZE, POLL_INTERVAL
from protocol_codec import decode, current_time_ms
from protocol_errors import (
    ProtocolError, MulticastJoinFailed, SocketBindFailed, ReceiveFailed,
)
from sender_utils import check_multicast_group
from metrics_utils import log_message, log_verbose

CREATED = "created"
ACTIVE = "active"
CLOSED = "closed"


def open_receive_socket(group, port:int, interface=DEFAULT_INTERFACE, poll_interval=POLL_INTERVAL):
    """
    Bind ('', port) and join `group` on `interface`.
    Returns (sock, mreq); pass both to release_socket() when done.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    except OSError as exc:
        raise SocketBindFailed(f"cannot create socket: {exc}") from exc

    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind(('', port))
    except OSError as exc:
        sock.close()
        raise SocketBindFailed(f"cannot bind receiver socket on port {port}: {exc}") from exc

    try:
        mreq = struct.pack('4s4s', socket.inet_aton(group), socket.inet_aton(interface))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
    except OSError as exc:
        sock.close()
        raise MulticastJoinFailed(f"cannot join {group} on {interface}: {exc}") from exc

    sock.settimeout(poll_interval)
    return sock, mreq


def release_socket(sock, mreq):
    try:
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, mreq)
    except OSError as exc:
        log_message(f"[RECEIVER] Could not drop membership: {exc}")
    finally:
        sock.close()


def dispatch_datagram(datagram, address, handler, metrics=None) -> bool:
    """
    Decode one datagram and hand it to `handler(header, payload, address)`.

    Malformed datagrams are dropped and False is returned. The payload is
    copied out of `datagram` before the handler runs, so the handler may keep it.
    An exception from the handler is logged and counted; it does not reach the loop.
    """
    try:
        header, payload_view = decode(datagram)
    except ProtocolError as exc:
        if metrics:
            metrics.log_drop(type(exc).__name__)
        log_verbose(f"[RECEIVER] Dropped datagram from {address}: {type(exc).__name__}: {exc}")
        return False

    payload = bytes(payload_view)
    if metrics:
        metrics.log_packet_recv(HEADER_SIZE + len(payload), max(0, current_time_ms() - header.timestamp))
    log_verbose(f"[RECEIVER] {header.type_name} from {address} seq={header.sequence} ({len(payload)} bytes)")
    try:
        handler(header, payload, address)
    except Exception as exc:
        if metrics:
            metrics.log_handler_error()
        log_message(f"[RECEIVER] Handler failed on {header.type_name} seq={header.sequence} "
                    f"from {address}: {type(exc).__name__}: {exc}")
    return True


class FleetReceiver:
    """
    Receive loop for one multicast group.

    run() blocks on the calling thread; start()/stop() drive it on a
    daemon thread. The loop ends on a stop request (clean) or a socket
    error (ReceiveFailed); either way membership is dropped and the socket
    closed before it returns.
    """

    def __init__(self, group, port:int, handler, interface=DEFAULT_INTERFACE,
                 buffer_size=BUFFER_SIZE, poll_interval=POLL_INTERVAL, metrics=None):
        self.group = check_multicast_group(group)
        self.port = port
        self.handler = handler
        self.interface = interface
        self.buffer_size = buffer_size
        self.poll_interval = poll_interval
        self.metrics = metrics

        self.state = CREATED
        self.stop_event = threading.Event()
        self.ready = threading.Event()
        self.thread = None
        self.error = None
        self.messages_dispatched = 0
        self.datagrams_dropped = 0

    def run(self, stop_event=None):
        if self.state != CREATED:
            raise RuntimeError(f"receiver already {self.state}")
        if stop_event is not None:
            self.stop_event = stop_event

        try:
            sock, mreq = open_receive_socket(self.group, self.port, self.interface, self.poll_interval)
        except (SocketBindFailed, MulticastJoinFailed):
            self.state = CLOSED
            self.ready.set()
            raise

        self.state = ACTIVE
        self.ready.set()
        log_message(f"[RECEIVER] Started multicast receiver on {self.group}:{self.port}")

        buffer = bytearray(self.buffer_size)
        view = memoryview(buffer)
        try:
            while not self.stop_event.is_set():
                try:
                    nbytes, addr = sock.recvfrom_into(buffer)
                except socket.timeout:
                    continue
                except OSError as exc:
                    raise ReceiveFailed(f"receive on {self.group}:{self.port} failed: {exc}") from exc

                if dispatch_datagram(view[:nbytes], addr, self.handler, self.metrics):
                    self.messages_dispatched += 1
                else:
                    self.datagrams_dropped += 1
        finally:
            release_socket(sock, mreq)
            self.state = CLOSED
            log_message(f"[RECEIVER] Stopped receiver on {self.group}:{self.port} "
                        f"({self.messages_dispatched} dispatched, {self.datagrams_dropped} dropped)")

    def _run_thread(self):
        try:
            self.run()
        except Exception as exc:
            self.error = exc
            log_message(f"[RECEIVER] Receive loop terminated: {type(exc).__name__}: {exc}")

    def start(self, stop_event=None):
        if stop_event is not None:
            self.stop_event = stop_event
        self.thread = threading.Thread(target=self._run_thread, daemon=True)
        self.thread.start()
        return self

    def wait_ready(self, timeout=None):
        """Block until the socket is joined (or failed to open). Returns the error, if any."""
        self.ready.wait(timeout)
        if self.thread is not None and self.state == CLOSED:
            self.thread.join(timeout)
        return self.error

    def stop(self, timeout=None):
        """Signal the loop and wait for it. Returns the terminal error or None."""
        self.stop_event.set()
        if self.thread is not None:
            self.thread.join(timeout)
        return self.error

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()


def start_receive(group, port:int, handler, stop_event=None, **options):
    """Run a receive loop on the calling thread until `stop_event` is set."""
    FleetReceiver(group, port, handler, **options).run(stop_event)
