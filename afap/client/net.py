import logging
import os
import socket
from typing import Optional

from afap.client.chunker import Chunker, ProgressCallback
from afap.common.crypto import FrameCodec, PEM_END, load_public_pem
from afap.common.errors import FilesystemError, TransferError
from afap.common.messages import FileTransfer, SessionState
from afap.common.protocol import (CONFIRMATION, CONFIRMATION_LIMIT, DEFAULT_TIMEOUT,
                                  ENC, ENVELOPE_LIMIT, StreamReader, send_all, wrap_os_error)

log = logging.getLogger(__name__)


def check_source(path: str) -> int:
    ''' This function validates the file to send before any connection is made and returns its size '''
    if not os.path.exists(path):
        raise FilesystemError(f"file does not exist: {path}")
    if not os.path.isfile(path):
        raise FilesystemError(f"not a regular file: {path}")
    try:
        return os.path.getsize(path)
    except OSError as exc:
        raise FilesystemError(f"cannot stat {path}: {exc}") from exc


class TransferClient:
    ''' Client side of one session: key exchange, frames out, confirmation in '''

    def __init__(self, host: str, port: int, codec: Optional[FrameCodec] = None,
                 timeout: Optional[float] = DEFAULT_TIMEOUT,
                 on_progress: Optional[ProgressCallback] = None):
        self.host, self.port = host, port
        self.codec = codec or FrameCodec()
        self.timeout = timeout
        self.on_progress = on_progress
        self.sock: Optional[socket.socket] = None
        self.reader: Optional[StreamReader] = None
        self.server_key = None   # RSA public key received in the key exchange
        self.transfer = FileTransfer()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def connect(self):
        # Establish a TCP connection to the file server.
        try:
            self.sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as exc:
            self.transfer.abort()
            raise wrap_os_error(exc, f"connecting to {self.host}:{self.port}") from exc
        self.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self.reader = StreamReader(self.sock)
        log.info("Connected to server at %s:%s", self.host, self.port)

    def exchange_keys(self):
        ''' Reads the server's public key envelope, the first message of every session '''
        envelope = self.reader.read_until(PEM_END, ENVELOPE_LIMIT)
        self.server_key = load_public_pem(envelope)
        self.transfer.advance(SessionState.KEY_EXCHANGED)
        log.info("Received server's public key (%d bits)", self.server_key.key_size)
        log.debug("Server public key:\n%s", envelope.decode(ENC, errors="replace"))

    def send_file(self, path: str) -> FileTransfer:
        '''
        This function sends the file name frame, then every content frame in order,
        then closes the write side so the server sees the end of the content.
        Input:
            - path: local file to send
        Output: the transfer record with final counters
        '''
        t = self.transfer
        t.path = path
        t.name = os.path.basename(os.path.normpath(path))
        t.total = check_source(path)
        chunker = Chunker(self.server_key, self.codec, on_progress=self.on_progress)
        try:
            f = open(path, "rb")
        except OSError as exc:
            raise FilesystemError(f"cannot open {path}: {exc}") from exc
        with f:
            send_all(self.sock, chunker.filename_frame(path))
            t.advance(SessionState.FILENAME_TRANSFERRED)
            t.advance(SessionState.CONTENT_TRANSFERRING)
            for frame in chunker.frames(f, t.total):
                send_all(self.sock, frame)
                t.frames += 1
                t.done = f.tell()
        try:
            self.sock.shutdown(socket.SHUT_WR)
        except OSError as exc:
            raise wrap_os_error(exc, "closing the write side") from exc
        t.advance(SessionState.CONTENT_COMPLETE)
        log.debug("Sent %s in %d content frames (%d bytes)", t.name, t.frames, t.done)
        return t

    def read_confirmation(self) -> Optional[str]:
        '''
        This function makes one best-effort read of the server's confirmation.
        The file is already stored by then, so a missing or unexpected reply is
        only logged.
        Output: the confirmation text, or None if it could not be read
        '''
        try:
            reply = self.reader.read_to_eof(CONFIRMATION_LIMIT)
        except TransferError as exc:
            log.warning("Could not read server confirmation: %s", exc)
            return None
        if not reply:
            log.warning("Could not read server confirmation: stream closed")
            return None
        if reply != CONFIRMATION:
            log.warning("Unexpected server confirmation: %r", reply)
        else:
            self.transfer.advance(SessionState.CONFIRMED)
        return reply.decode(ENC, errors="replace")

    def close(self):
        # Content already delivered: an unconfirmed session is not an aborted one.
        if self.transfer.state is not SessionState.CONTENT_COMPLETE:
            self.transfer.abort()
        if self.sock:
            try:
                self.sock.close()
            finally:
                self.sock = None


def send_file(host: str, port: int, path: str, codec: Optional[FrameCodec] = None,
              timeout: Optional[float] = DEFAULT_TIMEOUT,
              on_progress: Optional[ProgressCallback] = None):
    '''
    This function runs one complete client session.
    Output: tuple of (transfer record, confirmation text or None)
    '''
    check_source(path)
    with TransferClient(host, port, codec=codec, timeout=timeout, on_progress=on_progress) as client:
        client.connect()
        client.exchange_keys()
        transfer = client.send_file(path)
        reply = client.read_confirmation()
        return transfer, reply
