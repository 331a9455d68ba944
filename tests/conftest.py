from __future__ import annotations

import threading

import pytest

from afap.common.crypto import rsa_generate
from afap.server.main import FileServer
from afap.server.state import ServerConfig


class FakeSocket:
    """Socket double that hands out scripted recv() results, one entry per call."""

    def __init__(self, chunks=()):
        self.chunks = list(chunks)
        self.sent = bytearray()
        self.recv_calls = 0

    def recv(self, bufsize: int) -> bytes:
        self.recv_calls += 1
        if not self.chunks:
            return b""
        item = self.chunks.pop(0)
        if isinstance(item, BaseException):
            raise item
        if len(item) > bufsize:
            self.chunks.insert(0, item[bufsize:])
            item = item[:bufsize]
        return item

    def sendall(self, data: bytes) -> None:
        self.sent.extend(data)


@pytest.fixture(scope="session")
def private_key():
    return rsa_generate()


@pytest.fixture(scope="session")
def public_key(private_key):
    return private_key.public_key()


@pytest.fixture
def fake_socket():
    return FakeSocket


@pytest.fixture
def receive_root(tmp_path):
    return tmp_path / "received"


@pytest.fixture
def server(receive_root):
    config = ServerConfig(host="127.0.0.1", port=0, receive_root=str(receive_root), timeout=10.0)
    srv = FileServer(config)
    srv.bind()
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    yield srv
    srv.close()
    t.join(timeout=5)
