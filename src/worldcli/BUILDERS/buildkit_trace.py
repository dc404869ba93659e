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
Decoder for ``moby.buildkit.trace`` messages.

The ``aux`` field of such a message is a base64 string holding a protobuf
encoded ``StatusResponse``. Only the vertices are needed to report build
progress, so this module reads just enough of the protobuf wire format to
pull them out:

    StatusResponse { repeated Vertex vertexes = 1; ... }
    Vertex { string digest = 1; repeated string inputs = 2; string name = 3;
             bool cached = 4; Timestamp started = 5; Timestamp completed = 6;
             string error = 7; ProgressGroup progressGroup = 8; }
"""
import base64
import binascii
from typing import Iterator, List, Optional, Tuple, Union

from ..errors import BuildLogError
from ..MODELS.build_events import BuildkitTraceEvent, Vertex

TRACE_ID = "moby.buildkit.trace"

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_BYTES = 2
WIRE_FIXED32 = 5

STATUS_VERTEXES = 1

VERTEX_DIGEST = 1
VERTEX_NAME = 3
VERTEX_CACHED = 4
VERTEX_ERROR = 7


def _read_varint(data: bytes, offset: int) -> Tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise BuildLogError("truncated varint in build trace")
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, offset
        shift += 7
        if shift > 63:
            raise BuildLogError("varint too long in build trace")


def iter_fields(data: bytes) -> Iterator[Tuple[int, int, Union[int, bytes]]]:
    """
    Yields ``(field number, wire type, value)`` for every field of a message.
    Length-delimited values are returned as bytes, everything else as int.
    """
    offset = 0
    while offset < len(data):
        key, offset = _read_varint(data, offset)
        number, wire_type = key >> 3, key & 0x07
        if wire_type == WIRE_VARINT:
            value, offset = _read_varint(data, offset)
        elif wire_type == WIRE_FIXED64:
            if offset + 8 > len(data):
                raise BuildLogError("truncated fixed64 in build trace")
            value = int.from_bytes(data[offset:offset + 8], "little")
            offset += 8
        elif wire_type == WIRE_FIXED32:
            if offset + 4 > len(data):
                raise BuildLogError("truncated fixed32 in build trace")
            value = int.from_bytes(data[offset:offset + 4], "little")
            offset += 4
        elif wire_type == WIRE_BYTES:
            size, offset = _read_varint(data, offset)
            if offset + size > len(data):
                raise BuildLogError("truncated field in build trace")
            value = data[offset:offset + size]
            offset += size
        else:
            raise BuildLogError(f"unsupported wire type {wire_type} in build trace")
        yield number, wire_type, value


def decode_vertex(data: bytes) -> Vertex:
    fields = {"digest": "", "name": "", "cached": False, "error": ""}
    for number, wire_type, value in iter_fields(data):
        if number == VERTEX_DIGEST and wire_type == WIRE_BYTES:
            fields["digest"] = value.decode("utf-8", errors="replace")
        elif number == VERTEX_NAME and wire_type == WIRE_BYTES:
            fields["name"] = value.decode("utf-8", errors="replace")
        elif number == VERTEX_CACHED and wire_type == WIRE_VARINT:
            fields["cached"] = bool(value)
        elif number == VERTEX_ERROR and wire_type == WIRE_BYTES:
            fields["error"] = value.decode("utf-8", errors="replace")
    return Vertex(**fields)


def decode_status(data: bytes) -> List[Vertex]:
    """Returns the vertices of a protobuf ``StatusResponse``."""
    return [decode_vertex(value) for number, wire_type, value in iter_fields(data)
            if number == STATUS_VERTEXES and wire_type == WIRE_BYTES]


def decode_trace(aux: object) -> BuildkitTraceEvent:
    """
    Decodes the ``aux`` payload of a trace message.

    :param aux: The base64 string found in the JSON message.
    :raises BuildLogError: If the payload is not valid base64 or protobuf.
    """
    if not isinstance(aux, str):
        raise BuildLogError(f"unexpected build trace payload of type {type(aux).__name__}")
    try:
        raw = base64.b64decode(aux, validate=True)
    except (binascii.Error, ValueError) as e:
        raise BuildLogError(f"invalid build trace payload: {e}") from e
    return BuildkitTraceEvent(vertices=decode_status(raw))


def current_step(event: BuildkitTraceEvent) -> Optional[str]:
    """
    The most recently reported vertex name, i.e. the step being built.

    :raises BuildLogError: If any vertex reports an error.
    """
    for vertex in event.vertices:
        if vertex.error:
            raise BuildLogError(vertex.error)
    named = [vertex.name for vertex in event.vertices if vertex.name]
    return named[-1] if named else None


# Encoding is only needed to produce trace payloads in tests and tools.

def _varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _bytes_field(number: int, payload: bytes) -> bytes:
    return _varint(number << 3 | WIRE_BYTES) + _varint(len(payload)) + payload


def encode_vertex(vertex: Vertex) -> bytes:
    out = b""
    if vertex.digest:
        out += _bytes_field(VERTEX_DIGEST, vertex.digest.encode("utf-8"))
    if vertex.name:
        out += _bytes_field(VERTEX_NAME, vertex.name.encode("utf-8"))
    if vertex.cached:
        out += _varint(VERTEX_CACHED << 3 | WIRE_VARINT) + _varint(1)
    if vertex.error:
        out += _bytes_field(VERTEX_ERROR, vertex.error.encode("utf-8"))
    return out


def encode_trace(vertices: List[Vertex]) -> str:
    """Builds the base64 ``aux`` payload for a list of vertices."""
    status = b"".join(_bytes_field(STATUS_VERTEXES, encode_vertex(vertex)) for vertex in vertices)
    return base64.b64encode(status).decode("ascii")
