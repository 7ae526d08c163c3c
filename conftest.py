#!/usr/bin/env python3
"""
Shared fixtures: GLB byte builders and a small skinned, animated, VRM-tagged
sample document.
"""

import json
import struct

import numpy as np
import pytest

from document_manager import DocumentManager


def make_glb(gltf, binary=None, extra_chunks=()):
    """Assemble GLB bytes by hand (independent of the codec under test)"""
    json_bytes = json.dumps(gltf).encode('utf-8')
    json_bytes += b' ' * ((4 - len(json_bytes) % 4) % 4)
    body = struct.pack('<II', len(json_bytes), 0x4E4F534A) + json_bytes
    if binary is not None:
        bin_bytes = bytes(binary) + b'\x00' * ((4 - len(binary) % 4) % 4)
        body += struct.pack('<II', len(bin_bytes), 0x004E4942) + bin_bytes
    for chunk_type, payload in extra_chunks:
        body += struct.pack('<II', len(payload), chunk_type) + payload
    return struct.pack('<III', 0x46546C67, 2, 12 + len(body)) + body


def sample_gltf():
    """Skinned character with a light, an unknown vendor extension and one animation

    Node indices (ids are index + 1):
        0 Armature -> [1 Hips, 4 Body]
        1 Hips -> [2 Spine]
        2 Spine -> [3 Head]
        3 Head (EXT_unknown_vendor, extras)
        4 Body (mesh 0, skin 0)
        5 Lamp (KHR_lights_punctual)
    """
    ibm = np.tile(np.identity(4, dtype=np.float32).reshape(16), (3, 1))
    positions = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=np.float32)
    times = np.array([0.0, 1.0], dtype=np.float32)
    rotations = np.array([[0, 0, 0, 1], [0, 0.7071068, 0, 0.7071068]], dtype=np.float32)
    binary = ibm.tobytes() + positions.tobytes() + times.tobytes() + rotations.tobytes()

    gltf = {
        'asset': {'version': '2.0', 'generator': 'fixture'},
        'extensionsUsed': ['VRMC_vrm', 'KHR_lights_punctual', 'KHR_materials_unlit', 'EXT_unknown_vendor'],
        'extensions': {
            'VRMC_vrm': {'specVersion': '1.0', 'meta': {'name': 'Fixture', 'authors': ['tester']}},
            'KHR_lights_punctual': {'lights': [{'type': 'point'}]},
        },
        'scene': 0,
        'scenes': [{'name': 'Main', 'nodes': [0, 5]}],
        'nodes': [
            {'name': 'Armature', 'children': [1, 4]},
            {'name': 'Hips', 'children': [2], 'translation': [0.0, 1.0, 0.0]},
            {'name': 'Spine', 'children': [3], 'translation': [0.0, 0.2, 0.0]},
            {'name': 'Head', 'translation': [0.0, 0.3, 0.0],
             'extensions': {'EXT_unknown_vendor': {'payload': [1, 2, 3]}},
             'extras': {'tag': 'head'}},
            {'name': 'Body', 'mesh': 0, 'skin': 0},
            {'name': 'Lamp', 'translation': [2.0, 3.0, 0.0],
             'extensions': {'KHR_lights_punctual': {'light': 0}}},
        ],
        'meshes': [{'name': 'BodyMesh', 'primitives': [{'attributes': {'POSITION': 1}, 'material': 0}]}],
        'materials': [{
            'name': 'Skin',
            'pbrMetallicRoughness': {'baseColorFactor': [1.0, 0.8, 0.7, 1.0]},
            'extensions': {'KHR_materials_unlit': {}},
            'extras': {'note': 'm'},
        }],
        'skins': [{'name': 'Rig', 'joints': [1, 2, 3], 'inverseBindMatrices': 0, 'skeleton': 1}],
        'animations': [{
            'name': 'Idle',
            'channels': [{'sampler': 0, 'target': {'node': 2, 'path': 'rotation'}}],
            'samplers': [{'input': 2, 'output': 3, 'interpolation': 'LINEAR'}],
        }],
        'accessors': [
            {'bufferView': 0, 'componentType': 5126, 'count': 3, 'type': 'MAT4'},
            {'bufferView': 1, 'componentType': 5126, 'count': 3, 'type': 'VEC3',
             'min': [0, 0, 0], 'max': [1, 1, 0]},
            {'bufferView': 2, 'componentType': 5126, 'count': 2, 'type': 'SCALAR', 'min': [0.0], 'max': [1.0]},
            {'bufferView': 3, 'componentType': 5126, 'count': 2, 'type': 'VEC4'},
        ],
        'bufferViews': [
            {'buffer': 0, 'byteOffset': 0, 'byteLength': 192},
            {'buffer': 0, 'byteOffset': 192, 'byteLength': 36},
            {'buffer': 0, 'byteOffset': 228, 'byteLength': 8},
            {'buffer': 0, 'byteOffset': 236, 'byteLength': 32},
        ],
        'buffers': [{'byteLength': len(binary)}],
    }
    return gltf, binary


def clip_gltf(bone_names=('mixamorig:Hips', 'mixamorig:Spine')):
    """Animation-only GLB: one translation track and one rotation track"""
    times = np.array([0.0, 0.5, 1.0], dtype=np.float32)
    translations = np.array([[0, 1, 0], [0, 1.1, 0], [0, 1, 0]], dtype=np.float32)
    rotations = np.array([[0, 0, 0, 1]] * 3, dtype=np.float32)
    binary = times.tobytes() + translations.tobytes() + rotations.tobytes()

    gltf = {
        'asset': {'version': '2.0'},
        'scenes': [{'nodes': [0]}],
        'nodes': [
            {'name': bone_names[0], 'children': [1]},
            {'name': bone_names[1]},
        ],
        'animations': [{
            'name': 'Walk',
            'channels': [
                {'sampler': 0, 'target': {'node': 0, 'path': 'translation'}},
                {'sampler': 1, 'target': {'node': 1, 'path': 'rotation'}},
            ],
            'samplers': [
                {'input': 0, 'output': 1},
                {'input': 0, 'output': 2},
            ],
        }],
        'accessors': [
            {'bufferView': 0, 'componentType': 5126, 'count': 3, 'type': 'SCALAR', 'min': [0.0], 'max': [1.0]},
            {'bufferView': 1, 'componentType': 5126, 'count': 3, 'type': 'VEC3'},
            {'bufferView': 2, 'componentType': 5126, 'count': 3, 'type': 'VEC4'},
        ],
        'bufferViews': [
            {'buffer': 0, 'byteOffset': 0, 'byteLength': 12},
            {'buffer': 0, 'byteOffset': 12, 'byteLength': 36},
            {'buffer': 0, 'byteOffset': 48, 'byteLength': 48},
        ],
        'buffers': [{'byteLength': len(binary)}],
    }
    return gltf, binary


@pytest.fixture
def glb_builder():
    return make_glb


@pytest.fixture
def clip_builder():
    return clip_gltf


@pytest.fixture
def sample():
    """(gltf dict, binary chunk) of the sample character"""
    return sample_gltf()


@pytest.fixture
def sample_glb():
    gltf, binary = sample_gltf()
    return make_glb(gltf, binary)


@pytest.fixture
def clip_glb():
    gltf, binary = clip_gltf()
    return make_glb(gltf, binary)


@pytest.fixture
def manager(sample_glb):
    doc_manager = DocumentManager()
    doc_manager.load_from_bytes(sample_glb, 'fixture.vrm')
    return doc_manager
