# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Codec for the engine's multiplexed stdout/stderr stream.

Each frame is an 8-byte header followed by the payload::

    [stream type: 1][reserved: 3][payload length: 4, big-endian][payload]

Stream type 1 is stdout and 2 is stderr.
"""
import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Iterator, List

from ..errors import FrameDecodeError

HEADER_SIZE = 8
STDOUT = 1
STDERR = 2

_HEADER = struct.Struct(">BxxxL")


@dataclass(frozen=True)
class LogFrame:
    """One demultiplexed chunk of container output."""
    stream: int
    payload: bytes


def encode_frame(stream: int, payload: bytes) -> bytes:
    """
    Encodes one frame.

    :param stream: Stream type (1 stdout, 2 stderr).
    :param payload: Raw payload bytes.
    """
    return _HEADER.pack(stream, len(payload)) + payload


def encode_frames(frames: Iterable[LogFrame]) -> bytes:
    return b"".join(encode_frame(frame.stream, frame.payload) for frame in frames)


def _read_exactly(reader: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = reader.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_frames(reader: BinaryIO) -> Iterator[LogFrame]:
    """
    Yields frames from a blocking binary stream until it ends.

    A stream that ends exactly on a frame boundary is a normal end of stream;
    one that ends inside a header or payload raises :class:`FrameDecodeError`.
    """
    while True:
        header = _read_exactly(reader, HEADER_SIZE)
        if not header:
            return
        if len(header) < HEADER_SIZE:
            raise FrameDecodeError(f"stream ended inside a frame header ({len(header)} of {HEADER_SIZE} bytes)")
        stream, size = _HEADER.unpack(header)
        payload = _read_exactly(reader, size)
        if len(payload) < size:
            raise FrameDecodeError(f"stream ended inside a frame payload ({len(payload)} of {size} bytes)")
        yield LogFrame(stream=stream, payload=payload)


def decode_frames(data: bytes) -> List[LogFrame]:
    """
    Decodes a complete buffer of frames.
    """
    frames = []
    offset = 0
    while offset < len(data):
        if len(data) - offset < HEADER_SIZE:
            raise FrameDecodeError("buffer ended inside a frame header")
        stream, size = _HEADER.unpack_from(data, offset)
        offset += HEADER_SIZE
        if len(data) - offset < size:
            raise FrameDecodeError("buffer ended inside a frame payload")
        frames.append(LogFrame(stream=stream, payload=data[offset:offset + size]))
        offset += size
    return frames
