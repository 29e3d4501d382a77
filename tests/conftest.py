import socket
import time

import pytest


class FakeSendSocket:
    def __init__(self, fail_with=None):
        self.sent = []
        self.closed = False
        self.fail_with = fail_with

    def sendto(self, packet, addr):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((bytes(packet), addr))
        return len(packet)

    def close(self):
        self.closed = True


class FakeRecvSocket:
    """
    Scripted receive socket. Each item is (bytes, addr) or an exception to raise.
    Once the script is exhausted, on_empty() runs and socket.timeout is raised.
    """

    def __init__(self, script, on_empty=None):
        self.script = list(script)
        self.on_empty = on_empty
        self.recv_calls = 0
        self.options = []
        self.closed = False

    def recvfrom_into(self, buffer):
        self.recv_calls += 1
        if not self.script:
            if self.on_empty:
                self.on_empty()
            else:
                time.sleep(0.001)
            raise socket.timeout()
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        data, addr = item
        buffer[:len(data)] = data
        return len(data), addr

    def setsockopt(self, level, option, value):
        self.options.append((level, option, value))

    def close(self):
        self.closed = True


@pytest.fixture
def fake_send_socket(monkeypatch):
    import sender_utils

    sock = FakeSendSocket()
    monkeypatch.setattr(sender_utils, "open_send_socket", lambda *args, **kwargs: sock)
    return sock


@pytest.fixture
def make_recv_socket(monkeypatch):
    """Install a FakeRecvSocket for the next FleetReceiver.run(); returns a factory."""
    import receiver_utils

    def factory(script, receiver):
        sock = FakeRecvSocket(script, on_empty=receiver.stop_event.set)
        monkeypatch.setattr(receiver_utils, "open_receive_socket", lambda *args, **kwargs: (sock, b"mreq"))
        return sock

    return factory
