from __future__ import annotations

import io
import os

import pytest

from afap.client.chunker import Chunker
from afap.common.crypto import FrameCodec
from afap.common.errors import CryptoError, FilesystemError, PeerConnectionError
from afap.common.messages import SessionState
from afap.common.protocol import StreamReader
from afap.server.reassembler import Reassembler, safe_join


def build_stream(public_key, name: bytes, content: bytes) -> bytes:
    codec = FrameCodec()
    chunker = Chunker(public_key, codec)
    frames = [codec.encode_frame(name, public_key)]
    frames.extend(chunker.frames(io.BytesIO(content), len(content)))
    return b"".join(frames)


def split_every(data: bytes, n: int) -> list[bytes]:
    return [data[i:i + n] for i in range(0, len(data), n)]


@pytest.mark.parametrize(
    "name, expected",
    [
        ("notes.txt", ("notes.txt",)),
        ("../../etc/passwd", ("etc", "passwd")),
        ("..\\..\\boot.ini", ("boot.ini",)),
        ("/abs/file.bin", ("abs", "file.bin")),
        ("C:\\Windows\\x.dll", ("Windows", "x.dll")),
        ("a/./b/../c.txt", ("a", "b", "c.txt")),
    ],
)
def test_safe_join_stays_inside_root(tmp_path, name, expected):
    target = safe_join(tmp_path, name)
    assert target == tmp_path.resolve().joinpath(*expected)
    assert tmp_path.resolve() in target.parents


@pytest.mark.parametrize("name", ["", "..", "../..", "/", "./.", "bad\x00name", "tab\tname"])
def test_safe_join_rejects_unusable_names(tmp_path, name):
    with pytest.raises(FilesystemError):
        safe_join(tmp_path, name)


def test_reassembles_through_tiny_reads(fake_socket, private_key, public_key, receive_root):
    content = os.urandom(1000)
    stream = build_stream(public_key, b"data.bin", content)
    sock = fake_socket(split_every(stream, 7))

    transfer = Reassembler(StreamReader(sock), private_key, FrameCodec(), receive_root).run()

    assert (receive_root / "data.bin").read_bytes() == content
    assert transfer.name == "data.bin"
    assert transfer.done == transfer.total == 1000
    assert transfer.frames == 6
    assert transfer.state is SessionState.CONTENT_COMPLETE


def test_reassembles_coalesced_frames(fake_socket, private_key, public_key, receive_root):
    content = os.urandom(2000)
    stream = build_stream(public_key, b"big.bin", content)
    sock = fake_socket(split_every(stream, 1000))

    Reassembler(StreamReader(sock), private_key, FrameCodec(), receive_root).run()

    assert (receive_root / "big.bin").read_bytes() == content


def test_traversal_name_lands_under_root(fake_socket, private_key, public_key, tmp_path):
    root = tmp_path / "inbox"
    stream = build_stream(public_key, b"../../escape.txt", b"contained")

    Reassembler(StreamReader(fake_socket([stream])), private_key, FrameCodec(), root).run()

    assert (root / "escape.txt").read_bytes() == b"contained"
    assert not (tmp_path / "escape.txt").exists()


def test_nested_name_creates_directories(fake_socket, private_key, public_key, receive_root):
    stream = build_stream(public_key, b"sub/dir/file.txt", b"nested")

    Reassembler(StreamReader(fake_socket([stream])), private_key, FrameCodec(), receive_root).run()

    assert (receive_root / "sub" / "dir" / "file.txt").read_bytes() == b"nested"


def test_truncated_frame_aborts_and_keeps_partial_output(fake_socket, private_key, public_key, receive_root):
    content = b"A" * 190 + b"B" * 190 + b"C" * 10
    stream = build_stream(public_key, b"partial.bin", content)
    sock = fake_socket([stream[:-100]])

    with pytest.raises(CryptoError):
        Reassembler(StreamReader(sock), private_key, FrameCodec(), receive_root).run()

    assert (receive_root / "partial.bin").read_bytes() == b"A" * 190 + b"B" * 190


def test_corrupted_frame_aborts_and_keeps_earlier_frames(fake_socket, private_key, public_key, receive_root):
    content = b"A" * 190 + b"B" * 190 + b"C" * 190 + b"D" * 10
    stream = bytearray(build_stream(public_key, b"flipped.bin", content))
    # name frame, then A and B intact; one byte of the C frame flipped
    stream[3 * 256 + 100] ^= 0xFF

    with pytest.raises(CryptoError):
        Reassembler(StreamReader(fake_socket([bytes(stream)])), private_key, FrameCodec(), receive_root).run()

    assert (receive_root / "flipped.bin").read_bytes() == b"A" * 190 + b"B" * 190


def test_eof_before_filename(fake_socket, private_key, receive_root):
    with pytest.raises(PeerConnectionError):
        Reassembler(StreamReader(fake_socket([])), private_key, FrameCodec(), receive_root).run()
    assert not receive_root.exists()


def test_non_utf8_filename_rejected(fake_socket, private_key, public_key, receive_root):
    stream = FrameCodec().encode_frame(b"\xff\xfe", public_key)
    with pytest.raises(CryptoError):
        Reassembler(StreamReader(fake_socket([stream])), private_key, FrameCodec(), receive_root).run()


def test_chunker_sends_base_name_and_reports_progress(private_key, public_key, tmp_path):
    seen = []
    codec = FrameCodec()
    chunker = Chunker(public_key, codec, on_progress=lambda done, total: seen.append((done, total)))
    src = tmp_path / "dir" / "report.pdf"
    src.parent.mkdir()
    src.write_bytes(b"z" * 600)

    name = codec.decode_frame(chunker.filename_frame(str(src)), private_key)
    with open(src, "rb") as f:
        frames = list(chunker.frames(f, 600))

    assert name == b"report.pdf"
    assert [len(codec.decode_frame(fr, private_key)) for fr in frames] == [190, 190, 190, 30]
    assert seen == [(190, 600), (380, 600), (570, 600), (600, 600)]
