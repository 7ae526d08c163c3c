#!/usr/bin/env python3
"""
Node Mapper Module
Bidirectional table between document node ids and render object ids, and
construction of the render tree from a document.
"""

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np

from .document import Document
from .errors import NotFoundError
from .render_tree import RenderTree, SceneGraph

logger = logging.getLogger(__name__)


class NodeMapper:
    """One-to-one mapping between document nodes and render objects

    A pair is created when a node is realized, removed when the node is
    deleted and never touched by a move.
    """

    def __init__(self):
        self._render_by_node: Dict[int, int] = {}
        self._node_by_render: Dict[int, int] = {}
        self.scene_groups: List[int] = []

    def __len__(self):
        return len(self._render_by_node)

    def __contains__(self, node_id):
        return node_id in self._render_by_node

    def add(self, node_id, render_id):
        if node_id in self._render_by_node:
            raise ValueError(f"Node {node_id} is already mapped")
        if render_id in self._node_by_render:
            raise ValueError(f"Render object {render_id} is already mapped")
        self._render_by_node[node_id] = render_id
        self._node_by_render[render_id] = node_id

    def remove(self, node_id) -> Optional[int]:
        render_id = self._render_by_node.pop(node_id, None)
        if render_id is not None:
            del self._node_by_render[render_id]
        return render_id

    def find_mapping(self, node_id) -> Optional[int]:
        """Render object id for a document node, or None"""
        return self._render_by_node.get(node_id)

    def find_document_node(self, render_id) -> Optional[int]:
        """Document node id for a render object, or None"""
        return self._node_by_render.get(render_id)

    def require(self, node_id) -> int:
        render_id = self._render_by_node.get(node_id)
        if render_id is None:
            raise NotFoundError(f"Node {node_id} is not mapped to a render object")
        return render_id

    def clear(self):
        self._render_by_node.clear()
        self._node_by_render.clear()
        self.scene_groups.clear()

    def node_ids(self) -> List[int]:
        return list(self._render_by_node)

    def scene_group(self, scene_index) -> int:
        return self.scene_groups[scene_index]


def mesh_placeholder(document: Document, mesh_index):
    """Lightweight stand-in for real geometry"""
    mesh = document.meshes[mesh_index]
    return {
        'mesh': mesh_index,
        'name': mesh.get('name'),
        'primitives': len(mesh.get('primitives', [])),
    }


def realize_subtree(document: Document, render_tree: RenderTree, mapper: NodeMapper,
                    node_id: int, parent_render_id: int, index=None) -> int:
    """Create render objects for a node and its descendants

    Args:
        document: Source document
        render_tree: Target render tree
        mapper: Mapper receiving the new pairs
        node_id: Subtree root
        parent_render_id: Render parent of the subtree root
        index: Insert position under the parent, None appends

    Returns:
        int: Render id of the subtree root
    """
    node = document.get_node(node_id)
    mesh = mesh_placeholder(document, node.mesh) if node.mesh is not None else None
    render_id = render_tree.create_object(node.local_matrix(), name=node.name, mesh=mesh)
    render_tree.reparent(render_id, parent_render_id, index)
    mapper.add(node_id, render_id)

    for child_id in node.children:
        if child_id in mapper:
            logger.warning("Node %s is reachable twice; second occurrence skipped", child_id)
            continue
        realize_subtree(document, render_tree, mapper, child_id, render_id)
    return render_id


def build_render_tree(document: Document, render_tree: Optional[RenderTree] = None,
                      mapper: Optional[NodeMapper] = None) -> Tuple[RenderTree, NodeMapper]:
    """Build a render tree mirroring every scene of a document

    One group object is created per scene under the render root; each
    scene's roots are realized recursively in document order. Orphan nodes
    are not realized.

    Args:
        document: Source document
        render_tree: Tree to populate (cleared first); a new SceneGraph if None
        mapper: Mapper to refill (cleared first); a new NodeMapper if None

    Returns:
        tuple: (render_tree, mapper)
    """
    if render_tree is None:
        render_tree = SceneGraph()
    else:
        render_tree.clear()

    if mapper is None:
        mapper = NodeMapper()
    else:
        mapper.clear()

    for i, scene in enumerate(document.scenes):
        group_id = render_tree.create_object(
            np.identity(4), name=scene.name or f"Scene {i}")
        render_tree.reparent(group_id, render_tree.root_id)
        mapper.scene_groups.append(group_id)

        for root_id in scene.nodes:
            if root_id in mapper:
                logger.warning("Node %s is a root of more than one scene; realized once", root_id)
                continue
            realize_subtree(document, render_tree, mapper, root_id, group_id)

    logger.info("Render tree built: %d scenes, %d nodes", len(document.scenes), len(mapper))
    return render_tree, mapper
