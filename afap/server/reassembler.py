"""
Server-side reassembly of one transfer.

Frames are recovered from the stream by their fixed size, never by how the
transport happened to split the bytes into recv() calls. The first frame is
the file name; every later frame is appended to the output in arrival order.
"""
import logging
import os
import re
from pathlib import Path
from typing import Optional

from afap.common.crypto import FrameCodec, frame_size
from afap.common.errors import CryptoError, FilesystemError, PeerConnectionError
from afap.common.messages import FileTransfer, SessionState
from afap.common.protocol import ENC, StreamReader

log = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\\/]+")
_CONTROL = re.compile(r"[\x00-\x1f\x7f]")


def safe_join(root, name: str) -> Path:
    '''
    This function maps a name received from a client to a path under root.
    Empty, "." and ".." components are dropped, as are drive letters, so the
    result can never point outside root.
    Input:
        - root: receive root directory
        - name: decrypted file name
    Output: path inside root
    '''
    if _CONTROL.search(name):
        raise FilesystemError(f"file name contains control characters: {name!r}")
    parts = [p for p in _SEPARATORS.split(name) if p not in ("", ".", "..")]
    if parts and re.fullmatch(r"[A-Za-z]:", parts[0]):
        parts = parts[1:]
    if not parts:
        raise FilesystemError(f"unusable file name: {name!r}")

    base = Path(root).resolve()
    target = base.joinpath(*parts).resolve()
    if target == base or base not in target.parents:
        raise FilesystemError(f"file name escapes receive root: {name!r}")
    return target


class Reassembler:
    ''' Rebuilds the client's file from the frames of one session '''

    def __init__(self, reader: StreamReader, private_key, codec: FrameCodec,
                 receive_root, transfer: Optional[FileTransfer] = None):
        self.reader = reader
        self.private_key = private_key
        self.codec = codec
        self.receive_root = receive_root
        self.frame_size = frame_size(private_key.key_size)
        self.transfer = transfer or FileTransfer()

    def receive_filename(self) -> Path:
        ''' Reads and decrypts the first frame and prepares the output location '''
        frame = self.reader.read_frame(self.frame_size)
        if frame is None:
            raise PeerConnectionError("stream closed before the file name was sent")
        raw = self.codec.decode_frame(frame, self.private_key)
        try:
            name = raw.decode(ENC)
        except UnicodeDecodeError as exc:
            raise CryptoError(f"file name is not valid {ENC}") from exc

        out_path = safe_join(self.receive_root, name)
        try:
            out_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"cannot create directory {out_path.parent}: {exc}") from exc

        self.transfer.name = name
        self.transfer.path = str(out_path)
        self.transfer.advance(SessionState.FILENAME_TRANSFERRED)
        return out_path

    def run(self) -> FileTransfer:
        '''
        This function receives the whole file: the name frame, then content frames
        until the client closes its side of the stream.
        A frame that fails to decrypt ends the session; whatever was written
        before it stays on disk.
        Output: the transfer record with the observed size
        '''
        t = self.transfer
        out_path = self.receive_filename()
        try:
            out = open(out_path, "wb")
        except OSError as exc:
            raise FilesystemError(f"cannot create {out_path}: {exc}") from exc

        t.advance(SessionState.CONTENT_TRANSFERRING)
        with out:
            while True:
                frame = self.reader.read_frame(self.frame_size)
                if frame is None:
                    break
                chunk = self.codec.decode_frame(frame, self.private_key)
                try:
                    out.write(chunk)
                except OSError as exc:
                    raise FilesystemError(f"cannot write {out_path}: {exc}") from exc
                t.frames += 1
                t.done += len(chunk)
            try:
                out.flush()
                os.fsync(out.fileno())
            except OSError as exc:
                raise FilesystemError(f"cannot flush {out_path}: {exc}") from exc

        t.total = t.done
        t.advance(SessionState.CONTENT_COMPLETE)
        log.debug("Reassembled %s from %d frames", out_path, t.frames)
        return t
