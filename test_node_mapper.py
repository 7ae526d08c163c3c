#!/usr/bin/env python3
"""
Tests for render tree construction and the node mapper
"""

import logging

import numpy as np
import pytest

from core.errors import NotFoundError
from core.node_mapper import NodeMapper, build_render_tree
from core.render_tree import SceneGraph
from readers.gltf_reader import GltfReader


def load(glb_builder, gltf, binary=None):
    return GltfReader().read_bytes(glb_builder(gltf, binary)).document


def test_every_reachable_node_is_mapped(glb_builder, sample):
    document = load(glb_builder, *sample)
    tree, mapper = build_render_tree(document)

    assert len(mapper) == len(document.reachable_node_ids()) == 6
    assert len(mapper.scene_groups) == 1
    assert tree.count() == 7
    for node_id in document.nodes:
        render_id = mapper.find_mapping(node_id)
        assert mapper.find_document_node(render_id) == node_id


def test_orphan_nodes_are_not_realized(glb_builder, sample):
    gltf, binary = sample
    gltf['nodes'].append({'name': 'Orphan'})
    document = load(glb_builder, gltf, binary)
    _, mapper = build_render_tree(document)

    orphan = document.find_node_by_name('Orphan')
    assert orphan is not None
    assert mapper.find_mapping(orphan.id) is None
    assert len(mapper) == 6


def test_child_order_and_transforms_follow_document(glb_builder, sample):
    document = load(glb_builder, *sample)
    tree, mapper = build_render_tree(document)

    armature = document.find_node_by_name('Armature')
    render_children = tree.children_of(mapper.find_mapping(armature.id))
    assert [mapper.find_document_node(c) for c in render_children] == armature.children

    head = document.find_node_by_name('Head')
    head_render = mapper.find_mapping(head.id)
    assert np.allclose(tree.world_matrix(head_render), document.world_matrix(head.id))


def test_mesh_nodes_get_placeholders(glb_builder, sample):
    document = load(glb_builder, *sample)
    tree, mapper = build_render_tree(document)

    body = tree.get(mapper.find_mapping(document.find_node_by_name('Body').id))
    assert body.mesh == {'mesh': 0, 'name': 'BodyMesh', 'primitives': 1}
    hips = tree.get(mapper.find_mapping(document.find_node_by_name('Hips').id))
    assert hips.mesh is None


def test_root_shared_by_two_scenes_realized_once(glb_builder, caplog):
    gltf = {
        'asset': {'version': '2.0'},
        'scenes': [{'nodes': [0]}, {'nodes': [0, 1]}],
        'nodes': [{'name': 'Shared'}, {'name': 'Second'}],
    }
    document = load(glb_builder, gltf)
    with caplog.at_level(logging.WARNING):
        tree, mapper = build_render_tree(document)

    assert len(mapper) == 2
    assert len(mapper.scene_groups) == 2
    assert "more than one scene" in caplog.text
    second_group = mapper.scene_group(1)
    assert [mapper.find_document_node(c) for c in tree.children_of(second_group)] == [2]


def test_rebuild_reuses_tree_and_mapper(glb_builder, sample):
    document = load(glb_builder, *sample)
    tree, mapper = build_render_tree(document)
    document.remove_nodes([6])
    document.rebuild_parent_index()

    same_tree, same_mapper = build_render_tree(document, tree, mapper)

    assert same_tree is tree and same_mapper is mapper
    assert len(mapper) == 5
    assert tree.count() == 6


def test_mapper_rejects_duplicate_pairs():
    mapper = NodeMapper()
    mapper.add(1, 10)
    with pytest.raises(ValueError):
        mapper.add(1, 11)
    with pytest.raises(ValueError):
        mapper.add(2, 10)

    assert mapper.remove(1) == 10
    assert mapper.find_document_node(10) is None
    assert 1 not in mapper


def test_require_unmapped_node():
    with pytest.raises(NotFoundError):
        NodeMapper().require(42)


def test_scene_graph_remove_and_dispose():
    tree = SceneGraph()
    parent = tree.create_object(np.identity(4), name='parent', mesh={'mesh': 0})
    child = tree.create_object(np.identity(4), name='child', mesh={'mesh': 1})
    tree.reparent(parent, tree.root_id)
    tree.reparent(child, parent)

    tree.dispose_resources(parent)
    assert tree.get(child).disposed
    tree.remove_object(parent)

    assert tree.count() == 0
    assert tree.children_of(tree.root_id) == []
    with pytest.raises(ValueError):
        tree.remove_object(tree.root_id)
