#!/usr/bin/env python3
"""
Tests for building Documents from GLB files
"""

import base64
import struct

import numpy as np
import pytest

from core.errors import ReferenceIntegrityError
from readers.gltf_reader import GltfReader, read_accessor


def minimal(nodes, scenes=None, **pools):
    gltf = {'asset': {'version': '2.0'}, 'nodes': nodes}
    if scenes is not None:
        gltf['scenes'] = scenes
    gltf.update(pools)
    return gltf


def test_reads_sample_structure(glb_builder, sample):
    gltf, binary = sample
    asset = GltfReader().read_bytes(glb_builder(gltf, binary))
    document = asset.document

    assert len(document.nodes) == 6
    armature = document.find_node_by_name('Armature')
    assert armature.id == 1
    assert armature.children == [2, 5]
    assert document.scenes[0].nodes == [1, 6]
    assert document.parent_of(4) == 3
    assert document.nodes[4].extras == {'tag': 'head'}
    assert document.nodes[2].translation == [0.0, 1.0, 0.0]

    skin = document.skins[0]
    assert skin.joints == [2, 3, 4]
    assert skin.skeleton == 2
    assert skin.accessor == 0
    assert skin.inverse_bind_matrices.shape == (3, 16)

    animation = document.animations[0]
    assert animation.name == 'Idle'
    assert animation.channels[0].target_node == 3
    assert animation.channels[0].path == 'rotation'

    assert document.materials[0].name == 'Skin'
    assert 'extensions' not in document.materials[0].properties
    assert asset.version == 2
    assert asset.raw_json['extensions']['VRMC_vrm']['specVersion'] == '1.0'


def test_dangling_child_reference_rejected(glb_builder):
    gltf = minimal([{'name': 'A', 'children': [5]}], [{'nodes': [0]}])
    with pytest.raises(ReferenceIntegrityError):
        GltfReader().read_bytes(glb_builder(gltf))


def test_dangling_mesh_reference_rejected(glb_builder):
    gltf = minimal([{'name': 'A', 'mesh': 3}], [{'nodes': [0]}])
    with pytest.raises(ReferenceIntegrityError, match="mesh"):
        GltfReader().read_bytes(glb_builder(gltf))


def test_scene_reference_out_of_range_rejected(glb_builder):
    gltf = minimal([{'name': 'A'}], [{'nodes': [0, 1]}])
    with pytest.raises(ReferenceIntegrityError):
        GltfReader().read_bytes(glb_builder(gltf))


def test_node_with_two_parents_rejected(glb_builder):
    gltf = minimal([{'children': [2]}, {'children': [2]}, {}], [{'nodes': [0, 1]}])
    with pytest.raises(ReferenceIntegrityError, match="more than one parent"):
        GltfReader().read_bytes(glb_builder(gltf))


def test_cycle_rejected(glb_builder):
    gltf = minimal([{'children': [1]}, {'children': [0]}], [{'nodes': []}])
    with pytest.raises(ReferenceIntegrityError, match="cycle"):
        GltfReader().read_bytes(glb_builder(gltf))


def test_missing_scenes_get_default_scene(glb_builder):
    gltf = minimal([{'name': 'A', 'children': [1]}, {'name': 'B'}, {'name': 'C'}])
    document = GltfReader().read_bytes(glb_builder(gltf)).document

    assert len(document.scenes) == 1
    assert document.scenes[0].nodes == [1, 3]


def test_matrix_wins_over_trs(glb_builder):
    matrix = [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 1, 2, 3, 1]
    gltf = minimal([{'matrix': matrix, 'translation': [9, 9, 9]}], [{'nodes': [0]}])
    node = GltfReader().read_bytes(glb_builder(gltf)).document.nodes[1]

    assert node.matrix == [float(v) for v in matrix]
    assert node.translation is None
    assert np.allclose(node.local_matrix()[:3, 3], [1, 2, 3])


def test_bad_animation_channel_skipped(glb_builder, sample):
    gltf, binary = sample
    gltf['animations'][0]['channels'].append({'sampler': 0, 'target': {'node': 99, 'path': 'rotation'}})
    gltf['animations'].append({
        'name': 'Broken',
        'channels': [{'sampler': 3, 'target': {'node': 1, 'path': 'rotation'}}],
        'samplers': [{'input': 2, 'output': 3}],
    })
    messages = []
    document = GltfReader(progress_callback=messages.append).read_bytes(glb_builder(gltf, binary)).document

    assert len(document.animations) == 1
    assert len(document.animations[0].channels) == 1
    assert any('Skipping channel 1 of animation 0' in m for m in messages)
    assert any("Dropping animation 1" in m for m in messages)


def test_skin_without_inverse_bind_matrices_uses_identity(glb_builder):
    gltf = minimal([{'name': 'Root', 'children': [1]}, {'name': 'Bone'}], [{'nodes': [0]}],
                   skins=[{'joints': [0, 1]}])
    skin = GltfReader().read_bytes(glb_builder(gltf)).document.skins[0]

    assert skin.accessor is None
    assert np.allclose(skin.inverse_bind_matrices[1], np.identity(4).reshape(16))


def test_skin_joint_count_mismatch_rejected(glb_builder):
    ibm = np.identity(4, dtype=np.float32).reshape(16).tobytes()
    gltf = minimal(
        [{'name': 'Root', 'children': [1]}, {'name': 'Bone'}], [{'nodes': [0]}],
        skins=[{'joints': [0, 1], 'inverseBindMatrices': 0}],
        accessors=[{'bufferView': 0, 'componentType': 5126, 'count': 1, 'type': 'MAT4'}],
        bufferViews=[{'buffer': 0, 'byteLength': 64}],
        buffers=[{'byteLength': 64}],
    )
    with pytest.raises(ReferenceIntegrityError, match="inverse bind"):
        GltfReader().read_bytes(glb_builder(gltf, ibm))


def test_unknown_root_members_carried():
    gltf = minimal([{'name': 'A'}], [{'nodes': [0]}])
    gltf['x_vendor_data'] = {'keep': True}
    document = GltfReader().build_document(gltf, None)
    assert document.unknown_fields == {'x_vendor_data': {'keep': True}}


def test_read_accessor_normalized():
    gltf = {
        'accessors': [{'bufferView': 0, 'componentType': 5121, 'normalized': True,
                       'count': 2, 'type': 'VEC2'}],
        'bufferViews': [{'buffer': 0, 'byteLength': 4}],
        'buffers': [{'byteLength': 4}],
    }
    values = read_accessor(gltf, bytes([0, 255, 255, 0]), 0)
    assert np.allclose(values, [[0.0, 1.0], [1.0, 0.0]])


def test_read_accessor_strided():
    binary = np.array([1, 2, 99, 3, 4, 99], dtype=np.float32).tobytes()
    gltf = {
        'accessors': [{'bufferView': 0, 'componentType': 5126, 'count': 2, 'type': 'VEC2'}],
        'bufferViews': [{'buffer': 0, 'byteLength': 24, 'byteStride': 12}],
        'buffers': [{'byteLength': 24}],
    }
    assert np.array_equal(read_accessor(gltf, binary, 0), [[1, 2], [3, 4]])


def test_read_accessor_sparse():
    binary = struct.pack('<H', 2) + b'\x00\x00' + struct.pack('<f', 5.0)
    gltf = {
        'accessors': [{
            'componentType': 5126, 'count': 3, 'type': 'SCALAR',
            'sparse': {
                'count': 1,
                'indices': {'bufferView': 0, 'componentType': 5123},
                'values': {'bufferView': 1},
            },
        }],
        'bufferViews': [
            {'buffer': 0, 'byteOffset': 0, 'byteLength': 2},
            {'buffer': 0, 'byteOffset': 4, 'byteLength': 4},
        ],
        'buffers': [{'byteLength': 8}],
    }
    assert np.array_equal(read_accessor(gltf, binary, 0).reshape(-1), [0.0, 0.0, 5.0])


def test_read_accessor_from_data_uri():
    raw = np.array([1.5, 2.5], dtype=np.float32).tobytes()
    uri = 'data:application/octet-stream;base64,' + base64.b64encode(raw).decode('ascii')
    gltf = {
        'accessors': [{'bufferView': 0, 'componentType': 5126, 'count': 2, 'type': 'SCALAR'}],
        'bufferViews': [{'buffer': 0, 'byteLength': 8}],
        'buffers': [{'byteLength': 8, 'uri': uri}],
    }
    assert np.array_equal(read_accessor(gltf, None, 0).reshape(-1), [1.5, 2.5])


def test_read_accessor_external_buffer_rejected():
    gltf = {
        'accessors': [{'bufferView': 0, 'componentType': 5126, 'count': 1, 'type': 'SCALAR'}],
        'bufferViews': [{'buffer': 0, 'byteLength': 4}],
        'buffers': [{'byteLength': 4, 'uri': 'model.bin'}],
    }
    with pytest.raises(ReferenceIntegrityError, match="external"):
        read_accessor(gltf, None, 0)


def test_read_accessor_overrun_rejected():
    gltf = {
        'accessors': [{'bufferView': 0, 'componentType': 5126, 'count': 4, 'type': 'VEC3'}],
        'bufferViews': [{'buffer': 0, 'byteLength': 12}],
        'buffers': [{'byteLength': 12}],
    }
    with pytest.raises(ReferenceIntegrityError):
        read_accessor(gltf, b'\x00' * 12, 0)
