import threading

import pytest

import sender_utils
from protocol_constants import MAGIC, MAX_PAYLOAD_LEN
from protocol_codec import MessageType, decode
from protocol_errors import MulticastJoinFailed, SendFailed, PayloadTooLarge, TransportError
from metrics_utils import PerformanceMetrics
from sender_utils import FleetSender, check_multicast_group

GROUP = "239.1.1.1"
PORT = 12345


@pytest.fixture
def sender(fake_send_socket):
    s = FleetSender(GROUP, PORT, 12345)
    yield s
    s.close()


def sent_messages(sock):
    return [(decode(packet), addr) for packet, addr in sock.sent]


def test_heartbeat(sender, fake_send_socket):
    sender.send_heartbeat()

    [((header, payload), addr)] = sent_messages(fake_send_socket)
    assert addr == (GROUP, PORT)
    assert header.msg_type is MessageType.HEARTBEAT
    assert header.payload_len == 0
    assert header.magic == MAGIC
    assert header.sender_id == 12345
    assert bytes(payload) == b""


def test_data(sender, fake_send_socket):
    sender.send_data(b"Hello, Fleet!")

    [((header, payload), _)] = sent_messages(fake_send_socket)
    assert header.msg_type is MessageType.DATA
    assert header.payload_len == 13
    assert bytes(payload) == b"Hello, Fleet!"


def test_control_encodes_text(sender, fake_send_socket):
    sender.send_control("SHUTDOWN")

    [((header, payload), _)] = sent_messages(fake_send_socket)
    assert header.msg_type is MessageType.CONTROL
    assert bytes(payload) == b"SHUTDOWN"


def test_returned_header_matches_wire(sender, fake_send_socket):
    returned = sender.send_data(b"abc")
    [((header, _), _)] = sent_messages(fake_send_socket)
    assert returned == header


def test_sequence_starts_at_zero_and_increments(sender, fake_send_socket):
    sender.send_heartbeat()
    sender.send_data(b"x")
    sender.send_control("y")
    sender.send_heartbeat()

    assert [h.sequence for (h, _), _ in sent_messages(fake_send_socket)] == [0, 1, 2, 3]


def test_sequence_wraps(sender, fake_send_socket):
    sender._sequence = 65534
    for _ in range(3):
        sender.send_heartbeat()

    assert [h.sequence for (h, _), _ in sent_messages(fake_send_socket)] == [65534, 65535, 0]


def test_concurrent_senders_never_reuse_a_sequence(sender, fake_send_socket):
    threads = [
        threading.Thread(target=lambda: [sender.send_data(b"t") for _ in range(250)])
        for _ in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    sequences = sorted(h.sequence for (h, _), _ in sent_messages(fake_send_socket))
    assert sequences == list(range(2000))


def test_timestamp_is_stamped_per_send(sender, fake_send_socket):
    first = sender.send_heartbeat()
    second = sender.send_heartbeat()
    assert first.timestamp > 0
    assert second.timestamp >= first.timestamp


def test_payload_too_large_does_not_consume_sequence(sender, fake_send_socket):
    with pytest.raises(PayloadTooLarge):
        sender.send_data(bytes(MAX_PAYLOAD_LEN + 1))
    assert fake_send_socket.sent == []

    assert sender.send_heartbeat().sequence == 0


def test_socket_error_becomes_send_failed(fake_send_socket):
    metrics = PerformanceMetrics()
    s = FleetSender(GROUP, PORT, 1, metrics=metrics)
    fake_send_socket.fail_with = OSError(101, "Network is unreachable")

    with pytest.raises(SendFailed) as excinfo:
        s.send_heartbeat()
    assert isinstance(excinfo.value.__cause__, OSError)
    assert metrics.get_stats()['send_failures'] == 1


def test_send_after_close_fails(fake_send_socket):
    s = FleetSender(GROUP, PORT, 1)
    s.close()
    s.close()
    assert s.closed
    assert fake_send_socket.closed
    with pytest.raises(SendFailed):
        s.send_heartbeat()


def test_context_manager_closes_socket(fake_send_socket):
    with FleetSender(GROUP, PORT, 1) as s:
        s.send_heartbeat()
    assert s.closed
    assert fake_send_socket.closed


def test_metrics_count_bytes(fake_send_socket):
    metrics = PerformanceMetrics()
    with FleetSender(GROUP, PORT, 1, metrics=metrics) as s:
        s.send_heartbeat()
        s.send_data(b"1234")
    stats = metrics.get_stats()
    assert stats['packets_sent'] == 2
    assert stats['bytes_sent'] == 24 + 28


@pytest.mark.parametrize("group", ["192.168.1.10", "10.0.0.1", "not-an-address", "300.1.1.1"])
def test_non_multicast_group_is_rejected(group, fake_send_socket):
    with pytest.raises(MulticastJoinFailed):
        FleetSender(group, PORT, 1)


def test_check_multicast_group_accepts_class_d():
    assert check_multicast_group("239.1.1.1") == "239.1.1.1"
    assert check_multicast_group("224.0.0.251") == "224.0.0.251"


def test_real_socket_opens_and_closes():
    try:
        s = FleetSender(GROUP, PORT, 7)
    except TransportError as e:
        pytest.skip(f"no multicast-capable interface: {e}")
    assert s.sock.getsockname()[1] != 0
    s.close()
    assert s.sock.fileno() == -1


def test_unavailable_interface_fails_to_join():
    with pytest.raises(TransportError):
        sender_utils.open_send_socket(interface="203.0.113.77")
