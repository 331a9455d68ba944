import socket
from typing import Optional

from afap.common.errors import CryptoError, PeerConnectionError, TransferTimeoutError

ENC = "utf-8"   # encoding for file names and the confirmation text

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8080
DEFAULT_TIMEOUT = 60.0   # seconds per blocking read/write
DEFAULT_RECEIVE_ROOT = "received"

CONFIRMATION = b"File received successfully"
CONFIRMATION_LIMIT = 512
ENVELOPE_LIMIT = 16 * 1024   # a PEM public key is far below this

RECV_SIZE = 4096


def wrap_os_error(exc: OSError, action: str) -> PeerConnectionError:
    if isinstance(exc, socket.timeout):
        return TransferTimeoutError(f"timed out while {action}")
    return PeerConnectionError(f"connection failed while {action}: {exc}")

def send_all(sock: socket.socket, data: bytes) -> None:
    '''
    The function writes every byte of data to the stream.
    Inputs:
        - sock: socket.socket - the session's connected socket
        - data: bytes - one message (envelope, frame or confirmation)
    Output: None
    '''
    try:
        sock.sendall(data)
    except OSError as exc:
        raise wrap_os_error(exc, "sending") from exc


class StreamReader:
    '''
    Buffered reader over one session's socket.
    A single recv() may return part of a message or several messages at once,
    so bytes are accumulated here until the caller's message is complete and
    any surplus is kept for the next call.
    '''

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._buf = bytearray()
        self.eof = False

    def _fill(self, action: str) -> bool:
        ''' Reads more bytes into the buffer; returns False once the peer has closed '''
        if self.eof:
            return False
        try:
            chunk = self.sock.recv(RECV_SIZE)
        except OSError as exc:
            raise wrap_os_error(exc, action) from exc
        if not chunk:
            self.eof = True
            return False
        self._buf.extend(chunk)
        return True

    def _take(self, n: int) -> bytes:
        data = bytes(self._buf[:n])
        del self._buf[:n]
        return data

    def read_exact(self, n: int) -> bytes:
        ''' Returns exactly n bytes; the stream closing first is a connection error '''
        while len(self._buf) < n:
            if not self._fill("reading"):
                raise PeerConnectionError(f"stream closed after {len(self._buf)} of {n} bytes")
        return self._take(n)

    def read_frame(self, size: int) -> Optional[bytes]:
        '''
        This function returns the next complete frame of size bytes.
        Output: the frame, or None when the stream ended cleanly on a frame boundary
        '''
        while len(self._buf) < size:
            if not self._fill("reading frame"):
                if not self._buf:
                    return None
                raise CryptoError(f"stream ended inside a frame ({len(self._buf)} of {size} bytes)")
        return self._take(size)

    def read_until(self, delim: bytes, limit: int) -> bytes:
        ''' Returns bytes up to and including delim, reading at most limit bytes '''
        start = 0
        while True:
            idx = self._buf.find(delim, start)
            if idx != -1:
                return self._take(idx + len(delim))
            if len(self._buf) > limit:
                raise PeerConnectionError(f"no message delimiter within {limit} bytes")
            start = max(0, len(self._buf) - len(delim) + 1)
            if not self._fill("reading"):
                raise PeerConnectionError("stream closed before message delimiter")

    def read_to_eof(self, limit: int) -> bytes:
        ''' Returns everything the peer sends until it closes, capped at limit bytes '''
        while len(self._buf) < limit and self._fill("reading"):
            pass
        return self._take(limit)
