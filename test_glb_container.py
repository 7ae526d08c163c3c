#!/usr/bin/env python3
"""
Tests for the GLB container codec
"""

import json
import struct

import pytest

from core.config import CodecConfig
from core.errors import MalformedContainerError
from readers.glb_container import (
    CHUNK_TYPE_BIN,
    CHUNK_TYPE_JSON,
    GLB_MAGIC,
    decode_container,
    encode_container,
    is_glb,
    read_container_json,
)


def test_encoded_header_length_matches_output():
    """Header total length equals the number of bytes written"""
    data = encode_container('{"asset":{"version":"2.0"}}', b'\x01\x02\x03')

    magic, version, total_length = struct.unpack_from('<III', data, 0)
    assert magic == GLB_MAGIC
    assert version == 2
    assert total_length == len(data)


def test_chunks_are_padded_to_four_bytes():
    json_text = '{"a":1}'
    data = encode_container(json_text, b'\x01\x02\x03')

    json_length, json_type = struct.unpack_from('<II', data, 12)
    assert json_type == CHUNK_TYPE_JSON
    assert json_length % 4 == 0
    json_payload = data[20:20 + json_length]
    assert json_payload == json_text.encode('utf-8') + b' '

    bin_offset = 20 + json_length
    bin_length, bin_type = struct.unpack_from('<II', data, bin_offset)
    assert bin_type == CHUNK_TYPE_BIN
    assert bin_length == 4
    assert data[bin_offset + 8:] == b'\x01\x02\x03\x00'


def test_encode_without_binary_has_single_chunk():
    data = encode_container('{}')
    container = decode_container(data)
    assert container.binary_chunk is None
    assert len(data) == 12 + 8 + 4


def test_decode_reads_hand_built_container(glb_builder, sample):
    gltf, binary = sample
    container = decode_container(glb_builder(gltf, binary))

    assert container.version == 2
    assert container.parse_json() == gltf
    assert container.binary_chunk == binary


def test_encode_decode_preserves_payloads():
    payload = json.dumps({'asset': {'version': '2.0'}, 'extras': {'note': 'ünïcode'}}, ensure_ascii=False)
    container = decode_container(encode_container(payload, b'\xff' * 8))

    assert json.loads(container.json_text) == json.loads(payload)
    assert container.binary_chunk == b'\xff' * 8


def test_short_header_rejected():
    with pytest.raises(MalformedContainerError):
        decode_container(b'glTF')


def test_bad_magic_rejected(glb_builder):
    data = bytearray(glb_builder({'asset': {'version': '2.0'}}))
    data[0:4] = b'GLTF'
    with pytest.raises(MalformedContainerError, match="magic"):
        decode_container(bytes(data))


def test_unsupported_version_rejected(glb_builder):
    data = bytearray(glb_builder({'asset': {'version': '2.0'}}))
    struct.pack_into('<I', data, 4, 1)
    with pytest.raises(MalformedContainerError, match="version"):
        decode_container(bytes(data))


def test_truncated_file_rejected(glb_builder, sample):
    gltf, binary = sample
    data = glb_builder(gltf, binary)
    with pytest.raises(MalformedContainerError):
        decode_container(data[:-10])


def test_chunk_length_beyond_buffer_rejected(glb_builder):
    data = bytearray(glb_builder({'asset': {'version': '2.0'}}))
    struct.pack_into('<I', data, 12, 10_000)
    with pytest.raises(MalformedContainerError, match="declares"):
        decode_container(bytes(data))


def test_first_chunk_must_be_json():
    payload = b'\x00' * 4
    body = struct.pack('<II', len(payload), CHUNK_TYPE_BIN) + payload
    data = struct.pack('<III', GLB_MAGIC, 2, 12 + len(body)) + body
    with pytest.raises(MalformedContainerError, match="JSON"):
        decode_container(data)


def test_container_without_chunks_rejected():
    data = struct.pack('<III', GLB_MAGIC, 2, 12)
    with pytest.raises(MalformedContainerError, match="no JSON chunk"):
        decode_container(data)


def test_invalid_json_rejected():
    text = b'{not json}'
    body = struct.pack('<II', len(text) + 2, CHUNK_TYPE_JSON) + text + b'  '
    data = struct.pack('<III', GLB_MAGIC, 2, 12 + len(body)) + body
    with pytest.raises(MalformedContainerError):
        read_container_json(data)


def test_unknown_chunk_skipped_by_default(glb_builder, sample):
    gltf, binary = sample
    data = glb_builder(gltf, binary, extra_chunks=[(0x12345678, b'abcd')])

    container = decode_container(data)
    assert container.parse_json() == gltf
    assert container.binary_chunk == binary


def test_unknown_chunk_rejected_when_strict(glb_builder, sample):
    gltf, binary = sample
    data = glb_builder(gltf, binary, extra_chunks=[(0x12345678, b'abcd')])

    with pytest.raises(MalformedContainerError, match="Unexpected chunk"):
        decode_container(data, CodecConfig(skip_unknown_chunks=False))


def test_misplaced_bin_chunk_rejected(glb_builder):
    data = glb_builder({'asset': {'version': '2.0'}}, extra_chunks=[
        (0x12345678, b'abcd'),
        (CHUNK_TYPE_BIN, b'\x01\x02\x03\x04'),
    ])

    with pytest.raises(MalformedContainerError, match="BIN chunk at position 2"):
        decode_container(data)


def test_second_bin_chunk_rejected(glb_builder, sample):
    gltf, binary = sample
    data = glb_builder(gltf, binary, extra_chunks=[(CHUNK_TYPE_BIN, b'\x00' * 4)])

    with pytest.raises(MalformedContainerError, match="BIN chunk at position 2"):
        decode_container(data)


def test_is_glb():
    assert is_glb(encode_container('{}'))
    assert not is_glb(b'{"asset": {}}')
    assert not is_glb(b'')
