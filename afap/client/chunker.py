import os
from typing import BinaryIO, Callable, Iterator, Optional

from afap.common.crypto import FrameCodec
from afap.common.errors import FilesystemError
from afap.common.protocol import ENC

ProgressCallback = Callable[[int, int], None]


class Chunker:
    ''' Turns a local file into the frames a client sends: the name first, then the content in order '''

    def __init__(self, public_key, codec: FrameCodec,
                 on_progress: Optional[ProgressCallback] = None):
        self.public_key = public_key
        self.codec = codec
        self.on_progress = on_progress
        self.chunk_size = codec.max_chunk_size(public_key.key_size)

    def filename_frame(self, path: str) -> bytes:
        '''
        This function encrypts the base name of path as a single frame.
        Directory components never leave the client.
        '''
        name = os.path.basename(os.path.normpath(path))
        return self.codec.encode_frame(name.encode(ENC), self.public_key)

    def frames(self, f: BinaryIO, total: int) -> Iterator[bytes]:
        '''
        This function reads f sequentially and yields one frame per chunk.
        Input:
            - f: file opened in binary mode
            - total: declared size, used for progress only
        Output: frames in file order; every chunk but the last is chunk_size bytes
        '''
        done = 0
        while True:
            try:
                chunk = f.read(self.chunk_size)
            except OSError as exc:
                raise FilesystemError(f"cannot read source file: {exc}") from exc
            if not chunk:
                break
            frame = self.codec.encode_frame(chunk, self.public_key)
            done += len(chunk)
            yield frame
            if self.on_progress:
                self.on_progress(done, total)
