from dataclasses import dataclass, field
from typing import Optional
import socket

from afap.common.crypto import DEFAULT_KEY_SIZE, MIN_KEY_SIZE, DEFAULT_PADDING, PADDING_SCHEMES, FrameCodec
from afap.common.messages import FileTransfer
from afap.common.protocol import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_RECEIVE_ROOT, DEFAULT_TIMEOUT

@dataclass(frozen=True)   # read-only: the only thing every session worker shares
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    receive_root: str = DEFAULT_RECEIVE_ROOT
    key_size: int = DEFAULT_KEY_SIZE
    padding: str = DEFAULT_PADDING
    timeout: Optional[float] = DEFAULT_TIMEOUT   # None blocks forever

    def __post_init__(self):
        if self.key_size < MIN_KEY_SIZE:
            raise ValueError(f"key_size must be at least {MIN_KEY_SIZE} bits")
        if self.padding not in PADDING_SCHEMES:
            raise ValueError(f"padding must be one of {', '.join(PADDING_SCHEMES)}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if not 0 <= self.port <= 65535:
            raise ValueError(f"invalid port: {self.port}")

    def codec(self) -> FrameCodec:
        return FrameCodec(self.padding)


@dataclass
class ServerSession:   # per-connection state, owned by exactly one worker thread
    config: ServerConfig
    conn: socket.socket
    addr: tuple
    private_key: object = None    # generated after accept, dropped with the session
    transfer: FileTransfer = field(default_factory=FileTransfer)

    @property
    def peer(self) -> str:
        return "%s:%s" % self.addr[:2]
