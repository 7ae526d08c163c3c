#!/usr/bin/env python3
"""
GLB Container Module
Binary glTF container: 12-byte header followed by a JSON chunk and an
optional BIN chunk, all little-endian.
"""

import json
import logging
import struct
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.config import CodecConfig, DEFAULT_CONFIG
from core.errors import MalformedContainerError

logger = logging.getLogger(__name__)

GLB_MAGIC = 0x46546C67  # b'glTF'
GLB_VERSION = 2
CHUNK_TYPE_JSON = 0x4E4F534A  # b'JSON'
CHUNK_TYPE_BIN = 0x004E4942  # b'BIN\x00'

HEADER_SIZE = 12
CHUNK_HEADER_SIZE = 8


@dataclass
class GlbContainer:
    """Decoded container payload"""
    json_text: str
    binary_chunk: Optional[bytes]
    version: int = GLB_VERSION

    def parse_json(self) -> Dict[str, Any]:
        try:
            gltf = json.loads(self.json_text)
        except ValueError as e:
            raise MalformedContainerError(f"JSON chunk is not valid JSON: {e}")
        if not isinstance(gltf, dict):
            raise MalformedContainerError("JSON chunk is not an object")
        return gltf


def _padded(data: bytes, pad_byte: bytes) -> bytes:
    return data + pad_byte * ((4 - len(data) % 4) % 4)


def decode_container(data: bytes, config: CodecConfig = DEFAULT_CONFIG) -> GlbContainer:
    """Split a GLB byte string into its JSON text and binary chunk

    Args:
        data: Complete file contents
        config: Codec configuration (unknown chunk policy)

    Returns:
        GlbContainer: JSON text, binary chunk (or None) and container version

    Raises:
        MalformedContainerError: On a bad header, truncated chunk, a first
            chunk that is not JSON or a BIN chunk out of position
    """
    data = bytes(data)
    if len(data) < HEADER_SIZE:
        raise MalformedContainerError(
            f"Container is {len(data)} bytes, shorter than the {HEADER_SIZE}-byte header")

    magic, version, total_length = struct.unpack_from('<III', data, 0)
    if magic != GLB_MAGIC:
        raise MalformedContainerError(f"Bad magic number 0x{magic:08X}, expected 0x{GLB_MAGIC:08X}")
    if version != GLB_VERSION:
        raise MalformedContainerError(f"Unsupported container version {version}")
    if total_length > len(data):
        raise MalformedContainerError(
            f"Header declares {total_length} bytes but only {len(data)} are available")
    if total_length < len(data):
        logger.warning("Ignoring %d trailing bytes after container", len(data) - total_length)

    json_text = None
    binary_chunk = None
    offset = HEADER_SIZE
    chunk_index = 0

    while offset < total_length:
        if offset + CHUNK_HEADER_SIZE > total_length:
            raise MalformedContainerError(f"Chunk header at offset {offset} is truncated")
        chunk_length, chunk_type = struct.unpack_from('<II', data, offset)
        offset += CHUNK_HEADER_SIZE
        if chunk_length > total_length - offset:
            raise MalformedContainerError(
                f"Chunk at offset {offset - CHUNK_HEADER_SIZE} declares {chunk_length} bytes, "
                f"only {total_length - offset} remain")
        payload = data[offset:offset + chunk_length]
        offset += chunk_length

        if chunk_index == 0:
            if chunk_type != CHUNK_TYPE_JSON:
                raise MalformedContainerError(f"First chunk has type 0x{chunk_type:08X}, expected JSON")
            try:
                json_text = payload.decode('utf-8')
            except UnicodeDecodeError as e:
                raise MalformedContainerError(f"JSON chunk is not UTF-8: {e}")
        elif chunk_index == 1 and chunk_type == CHUNK_TYPE_BIN:
            binary_chunk = payload
        elif chunk_type == CHUNK_TYPE_BIN:
            raise MalformedContainerError(
                f"BIN chunk at position {chunk_index}; it must directly follow the JSON chunk")
        elif config.skip_unknown_chunks:
            logger.info("Skipping chunk of type 0x%08X (%d bytes)", chunk_type, chunk_length)
        else:
            raise MalformedContainerError(f"Unexpected chunk of type 0x{chunk_type:08X}")
        chunk_index += 1

    if json_text is None:
        raise MalformedContainerError("Container has no JSON chunk")

    return GlbContainer(json_text=json_text, binary_chunk=binary_chunk, version=version)


def encode_container(json_text: str, binary_chunk: Optional[bytes] = None,
                     config: CodecConfig = DEFAULT_CONFIG) -> bytes:
    """Assemble a GLB byte string

    Args:
        json_text: Serialized glTF JSON
        binary_chunk: BIN chunk payload, omitted when None
        config: Codec configuration

    Returns:
        bytes: Header, space-padded JSON chunk, zero-padded BIN chunk
    """
    json_bytes = _padded(json_text.encode('utf-8'), b' ')
    chunks = [struct.pack('<II', len(json_bytes), CHUNK_TYPE_JSON), json_bytes]

    if binary_chunk is not None:
        bin_bytes = _padded(bytes(binary_chunk), b'\x00')
        chunks.append(struct.pack('<II', len(bin_bytes), CHUNK_TYPE_BIN))
        chunks.append(bin_bytes)

    body = b''.join(chunks)
    total_length = HEADER_SIZE + len(body)
    return struct.pack('<III', GLB_MAGIC, GLB_VERSION, total_length) + body


def read_container_json(data: bytes, config: CodecConfig = DEFAULT_CONFIG) -> Dict[str, Any]:
    """Decode a container and parse its JSON chunk"""
    return decode_container(data, config).parse_json()


def is_glb(data: bytes) -> bool:
    return len(data) >= 4 and struct.unpack_from('<I', data, 0)[0] == GLB_MAGIC
