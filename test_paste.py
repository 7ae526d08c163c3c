#!/usr/bin/env python3
"""
Tests for pasting subtrees and animations between loaded documents
"""

import numpy as np
import pytest

from core.errors import NotFoundError, ProtectedNodeError, ReferenceIntegrityError
from core.resource_importer import ResourceImporter
from document_manager import DocumentManager
from readers import read_container_json

# Sample ids: 1 Armature, 2 Hips, 3 Spine, 4 Head, 5 Body, 6 Lamp
ARMATURE, HIPS, SPINE, HEAD, BODY, LAMP = 1, 2, 3, 4, 5, 6


def load(data, name='fixture.vrm'):
    doc_manager = DocumentManager()
    doc_manager.load_from_bytes(data, name)
    return doc_manager


@pytest.fixture
def source(sample_glb):
    return load(sample_glb, 'source.vrm')


def textured_gltf(sample):
    """Sample character whose material uses a texture in two places"""
    gltf, binary = sample
    image = b'\x89PNG\r\n\x1a\n'
    gltf['bufferViews'].append({'buffer': 0, 'byteOffset': len(binary), 'byteLength': len(image)})
    gltf['buffers'][0]['byteLength'] = len(binary) + len(image)
    gltf['samplers'] = [{'magFilter': 9729}]
    gltf['images'] = [{'bufferView': 4, 'mimeType': 'image/png'}]
    gltf['textures'] = [{'sampler': 0, 'source': 0}]
    material = gltf['materials'][0]
    material['pbrMetallicRoughness']['baseColorTexture'] = {'index': 0}
    material['extensions']['KHR_materials_clearcoat'] = {'clearcoatFactor': 1.0,
                                                          'clearcoatTexture': {'index': 0, 'texCoord': 0}}
    gltf['extensionsUsed'].append('KHR_materials_clearcoat')
    return gltf, binary + image


def test_importer_copies_textures_once(sample, glb_builder):
    gltf, binary = textured_gltf(sample)
    source = load(glb_builder(gltf, binary))
    target = load(glb_builder(gltf, binary))
    importer = ResourceImporter(source.document, target.document, source.extensions)

    index = importer.material(0)

    assert index == 1
    assert importer.material(0) == 1
    copied = target.document.materials[1]
    assert copied.name == 'Skin'
    assert copied.properties['pbrMetallicRoughness']['baseColorTexture'] == {'index': 1}
    assert copied.extensions['KHR_materials_clearcoat']['clearcoatTexture'] == {'index': 1, 'texCoord': 0}
    assert copied.extensions['KHR_materials_unlit'] == {}
    assert target.document.textures[1] == {'sampler': 1, 'source': 1}
    assert len(target.document.images) == 2
    image_view = target.document.images[1]['bufferView']
    assert target.document.view_bytes(image_view) == b'\x89PNG\r\n\x1a\n'
    assert importer.extension_names == ['KHR_materials_unlit', 'KHR_materials_clearcoat']


def test_importer_copies_accessor_bytes(source, manager):
    importer = ResourceImporter(source.document, manager.document)

    index = importer.accessor(1)

    assert index == 4
    accessor = manager.document.accessors[index]
    assert accessor['type'] == 'VEC3'
    assert accessor['max'] == [1, 1, 0]
    assert manager.document.view_bytes(accessor['bufferView']) == source.document.view_bytes(1)
    assert importer.summary()['buffer_views'] == 1


def test_importer_rejects_dangling_index(source, manager):
    importer = ResourceImporter(source.document, manager.document)

    with pytest.raises(ReferenceIntegrityError):
        importer.mesh(3)


def test_paste_add_copies_mesh_and_resolves_skin(source, manager):
    meshes = len(manager.document.meshes)

    new_root = manager.paste_node(source, BODY, ARMATURE)

    document = manager.document
    pasted = document.nodes[new_root]
    assert pasted.name == 'Body_1'
    assert document.parent_of(new_root) == ARMATURE
    assert len(document.meshes) == meshes + 1
    primitive = document.meshes[pasted.mesh]['primitives'][0]
    assert primitive['material'] == 1
    assert document.materials[1].extensions == {'KHR_materials_unlit': {}}
    position_view = document.accessors[primitive['attributes']['POSITION']]['bufferView']
    assert document.view_bytes(position_view) == source.document.view_bytes(1)

    skin = document.skins[pasted.skin]
    assert pasted.skin == 1
    assert skin.joints == [HIPS, SPINE, HEAD]
    assert skin.skeleton == HIPS
    assert manager.mutator.check_invariants() is None


def test_paste_add_numbers_repeated_names(source, manager):
    first = manager.paste_node(source, LAMP)
    second = manager.paste_node(source, LAMP)

    assert manager.document.nodes[first].name == 'Lamp_1'
    assert manager.document.nodes[second].name == 'Lamp_2'
    assert manager.document.scenes[0].nodes == [ARMATURE, LAMP, first, second]


def test_paste_subtree_without_mesh_copies_nothing(source, manager):
    accessors = len(manager.document.accessors)

    new_root = manager.paste_node(source, HIPS, LAMP)

    names = [manager.document.nodes[n].name for n in manager.document.iter_subtree(new_root)]
    assert names == ['Hips', 'Spine', 'Head']
    head = manager.document.find_nodes_by_name('Head')[1]
    assert head.extras == {'tag': 'head'}
    assert len(manager.document.accessors) == accessors


def test_paste_replace_keeps_scene_position(source, manager):
    new_root = manager.paste_node(source, HIPS, LAMP, mode='replace')

    document = manager.document
    assert document.scenes[0].nodes == [ARMATURE, new_root]
    assert LAMP not in document.nodes
    assert document.nodes[new_root].name == 'Hips'
    scene_children = manager.render_tree.children_of(manager.mapper.scene_group(0))
    assert scene_children[1] == manager.mapper.require(new_root)
    assert manager.mutator.check_invariants() is None


def test_paste_replace_under_parent(source, manager):
    new_root = manager.paste_node(source, LAMP, HIPS, mode='replace')

    document = manager.document
    assert document.nodes[ARMATURE].children == [new_root, BODY]
    assert HIPS not in document.nodes
    assert document.nodes[new_root].name == 'Lamp'
    assert document.skins[0].joints == []
    assert document.nodes[BODY].skin is None
    assert manager.mutator.check_invariants() is None


def test_paste_replace_rejects_protected_subtree(source, manager):
    manager.protect_node(HEAD)
    before = manager.get_hierarchy()

    with pytest.raises(ProtectedNodeError):
        manager.paste_node(source, LAMP, HIPS, mode='replace')

    assert manager.get_hierarchy() == before
    assert not manager.history.can_undo()


def test_paste_with_unresolved_joints_rejected(source, glb_builder):
    gltf = {
        'asset': {'version': '2.0'},
        'scenes': [{'nodes': [0]}],
        'nodes': [{'name': 'Prop'}],
    }
    target = load(glb_builder(gltf), 'prop.glb')

    with pytest.raises(ReferenceIntegrityError, match="Hips"):
        target.paste_node(source, BODY)

    assert len(target.document.nodes) == 1
    assert target.document.meshes == []
    assert target.document.binary is None
    assert not target.history.can_undo()


def test_paste_mode_checks(source, manager):
    with pytest.raises(ValueError, match="Unknown paste mode"):
        manager.paste_node(source, LAMP, mode='merge')
    with pytest.raises(ValueError, match="target"):
        manager.paste_node(source, LAMP, mode='replace')
    with pytest.raises(NotFoundError):
        manager.paste_node(source, 99)


def test_undo_and_redo_paste(source, manager):
    document = manager.document
    counts = document.resource_counts()
    binary = document.binary
    hierarchy = manager.get_hierarchy()

    manager.paste_node(source, BODY, LAMP, mode='replace')
    assert document.resource_counts() != counts

    assert manager.undo()
    document = manager.document
    assert document.resource_counts() == counts
    assert document.binary == binary
    assert len(document.materials) == 1
    assert manager.get_hierarchy() == hierarchy
    assert manager.mutator.check_invariants() is None

    assert manager.redo()
    assert len(manager.document.meshes) == 2
    assert LAMP not in manager.document.nodes


def test_pasted_resources_survive_export(source, manager):
    positions = source.document.view_bytes(1)
    manager.paste_node(source, BODY, ARMATURE)

    data = manager.export_to_bytes()
    output = read_container_json(data)
    assert output['materials'][1]['extensions'] == {'KHR_materials_unlit': {}}
    assert 'KHR_materials_unlit' in output['extensionsUsed']
    assert len(output['skins']) == 2

    reloaded = load(data, 'pasted.vrm')
    document = reloaded.document
    node = document.find_node_by_name('Body_1')
    accessor = document.meshes[node.mesh]['primitives'][0]['attributes']['POSITION']
    assert document.view_bytes(document.accessors[accessor]['bufferView']) == positions
    assert [document.nodes[j].name for j in document.skins[node.skin].joints] == ['Hips', 'Spine', 'Head']


def test_paste_animation_between_documents(clip_glb, manager):
    source = load(clip_glb, 'walk.vrma')

    report = manager.paste_animation(source, 0)

    assert report.success
    assert report.channels == 2
    animation = manager.document.animations[report.animation_index]
    assert animation.name == 'Walk'
    assert {c.target_node for c in animation.channels} == {HIPS, SPINE}
    assert manager.undo()
    assert len(manager.document.animations) == 1


def test_paste_animation_copies_source_keys(source, manager):
    report = manager.paste_animation(source, 0, retarget=False)

    assert report.success
    animation = manager.document.animations[report.animation_index]
    channel = animation.channels[0]
    assert channel.target_node == SPINE
    assert channel.path == 'rotation'
    output = manager.document.accessors[animation.samplers[channel.sampler].output]
    values = np.frombuffer(manager.document.view_bytes(output['bufferView']), dtype=np.float32)
    np.testing.assert_allclose(values.reshape(-1, 4)[1], [0, 0.7071068, 0, 0.7071068], atol=1e-6)


def test_paste_animation_unknown_index(source, manager):
    with pytest.raises(NotFoundError):
        manager.paste_animation(source, 4)
