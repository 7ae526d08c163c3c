#!/usr/bin/env python3
"""
Structural Mutator Module
Move, copy, paste, delete and transform edits applied to the document and
the render tree together.

Every operation checks its preconditions before touching either tree. If a
collaborator fails halfway, the document is restored from the snapshot
taken at the start and the render tree is rebuilt from it, so callers never
observe a partial edit.
"""

import copy
import logging
from contextlib import contextmanager
from typing import Dict, List, Optional

import numpy as np

from .config import CodecConfig, DEFAULT_CONFIG
from .document import Document, Node, Skin
from .errors import CycleError, NotFoundError, ProtectedNodeError, ReferenceIntegrityError
from .node_mapper import NodeMapper, build_render_tree, realize_subtree
from .render_tree import RenderTree
from .resource_importer import ResourceImporter
from .transforms import relative_matrix

logger = logging.getLogger(__name__)

# Parent world matrices with a smaller basis determinant are treated as singular
SINGULAR_EPSILON = 1e-12

PASTE_MODES = ('add', 'replace')


class StructuralMutator:
    """Applies structural edits through the node mapper

    Args:
        document: Document being edited
        render_tree: Render tree mirroring the document
        mapper: Mapping between the two
        config: Codec configuration (copy suffix, move defaults)
    """

    def __init__(self, document: Document, render_tree: RenderTree, mapper: NodeMapper,
                 config: CodecConfig = DEFAULT_CONFIG):
        self.document = document
        self.render_tree = render_tree
        self.mapper = mapper
        self.config = config

    @contextmanager
    def _atomic(self, operation):
        before = self.document.snapshot()
        try:
            yield
        except Exception:
            logger.exception("%s failed; restoring document and rebuilding render tree", operation)
            self.document.restore(before)
            build_render_tree(self.document, self.render_tree, self.mapper)
            raise

    def _target_render_id(self, parent_id) -> int:
        """Render object receiving children of parent_id (None: active scene group)"""
        if parent_id is not None:
            return self.mapper.require(parent_id)
        if not self.mapper.scene_groups:
            raise NotFoundError("Document has no scene to attach to")
        return self.mapper.scene_group(self.document.active_scene)

    # ------------------------------------------------------------------
    # Move
    # ------------------------------------------------------------------

    def move(self, node_id, new_parent_id=None, preserve_world=None):
        """Reparent a node in both trees

        Args:
            node_id: Node to move
            new_parent_id: New parent node, None for the active scene root
            preserve_world: Keep the world transform by recomputing the local
                one; defaults to CodecConfig.preserve_world_on_move

        Raises:
            NotFoundError: If either node is not mapped
            ProtectedNodeError: If the node is protected
            CycleError: If the new parent is the node or one of its descendants
        """
        if preserve_world is None:
            preserve_world = self.config.preserve_world_on_move

        render_id = self.mapper.require(node_id)
        target_render_id = self._target_render_id(new_parent_id)
        node = self.document.get_node(node_id)

        if node.protected:
            raise ProtectedNodeError(f"Node {node_id} ('{node.name}') is protected")
        if new_parent_id is not None and self.document.is_ancestor(node_id, new_parent_id):
            raise CycleError(f"Cannot move node {node_id} under its own descendant {new_parent_id}")

        local = None
        if preserve_world:
            world = self.document.world_matrix(node_id)
            parent_world = (self.document.world_matrix(new_parent_id)
                            if new_parent_id is not None else np.identity(4))
            if abs(np.linalg.det(parent_world[:3, :3])) < SINGULAR_EPSILON:
                logger.warning("New parent of node %s has a singular transform; keeping local transform",
                               node_id)
            else:
                local = relative_matrix(world, parent_world)

        with self._atomic("move"):
            self.document.detach(node_id)
            self.document.attach(node_id, parent_id=new_parent_id)
            self.render_tree.reparent(render_id, target_render_id)
            if local is not None:
                node.set_local_matrix(local)
                self.render_tree.set_transform(render_id, node.local_matrix())

        logger.info("Moved node %s under %s", node_id,
                    new_parent_id if new_parent_id is not None else "scene root")

    # ------------------------------------------------------------------
    # Copy
    # ------------------------------------------------------------------

    def copy(self, node_id, target_parent_id=None) -> int:
        """Deep-clone a subtree under a target parent

        Clones get fresh ids and suffixed names. Mesh, camera and skin
        references are shared, except on skinned-mesh nodes, which get a new
        skin whose joints are re-resolved by name inside the clone; joints
        with no namesake in the clone keep pointing at the original node.

        Args:
            node_id: Subtree root to copy
            target_parent_id: Parent of the copy, None for the active scene root

        Returns:
            int: Id of the new subtree root
        """
        self.mapper.require(node_id)
        target_render_id = self._target_render_id(target_parent_id)

        with self._atomic("copy"):
            clone_ids = self._clone_subtree(node_id)
            new_root = clone_ids[node_id]
            self._rebind_skins(clone_ids)
            self.document.attach(new_root, parent_id=target_parent_id)
            realize_subtree(self.document, self.render_tree, self.mapper, new_root, target_render_id)

        logger.info("Copied node %s to %s (%d nodes)", node_id, new_root, len(clone_ids))
        return new_root

    def _clone_subtree(self, node_id) -> Dict[int, int]:
        """Create detached clones of a subtree, returning original id -> clone id"""
        originals = list(self.document.iter_subtree(node_id))
        clone_ids = {original: self.document.allocate_id() for original in originals}
        suffix = self.config.copy_suffix

        for original_id in originals:
            source = self.document.nodes[original_id]
            clone = Node(
                id=clone_ids[original_id],
                name=f"{source.name}{suffix}" if source.name else source.name,
                translation=copy.copy(source.translation),
                rotation=copy.copy(source.rotation),
                scale=copy.copy(source.scale),
                matrix=copy.copy(source.matrix),
                mesh=source.mesh,
                camera=source.camera,
                skin=source.skin,
                children=[clone_ids[c] for c in source.children],
                extras=copy.deepcopy(source.extras),
                weights=copy.copy(source.weights),
                load_index=None,
            )
            self.document.nodes[clone.id] = clone

        self.document.rebuild_parent_index()
        return clone_ids

    def _rebind_skins(self, clone_ids: Dict[int, int]):
        by_name: Dict[str, int] = {}
        for original_id, clone_id in clone_ids.items():
            name = self.document.nodes[original_id].name
            if name and name not in by_name:
                by_name[name] = clone_id

        def rebind(joint_id):
            name = self.document.nodes[joint_id].name if joint_id in self.document.nodes else None
            if name:
                return by_name.get(name, joint_id)
            return clone_ids.get(joint_id, joint_id)

        new_skins: Dict[int, int] = {}
        for clone_id in clone_ids.values():
            clone = self.document.nodes[clone_id]
            if clone.skin is None or clone.mesh is None:
                continue
            if clone.skin not in new_skins:
                source = self.document.skins[clone.skin]
                joints = [rebind(j) for j in source.joints]
                unmatched = sum(1 for old, new in zip(source.joints, joints) if old == new)
                if unmatched:
                    logger.info("Copied skin '%s' keeps %d original joints", source.name, unmatched)
                skin = Skin(
                    name=source.name,
                    joints=joints,
                    inverse_bind_matrices=source.inverse_bind_matrices.copy(),
                    skeleton=rebind(source.skeleton) if source.skeleton is not None else None,
                    accessor=source.accessor,
                    extras=copy.deepcopy(source.extras),
                    extensions=copy.deepcopy(source.extensions),
                )
                self.document.skins.append(skin)
                new_skins[clone.skin] = len(self.document.skins) - 1
            clone.skin = new_skins[clone.skin]

    # ------------------------------------------------------------------
    # Paste
    # ------------------------------------------------------------------

    def paste(self, source: Document, node_id, target_id=None, mode='add',
              source_extensions=None) -> int:
        """Clone a subtree of another document into this one

        Meshes, materials, textures, cameras and the accessors and bytes
        behind them are copied with remapped indices. Skins used by pasted
        nodes are rebuilt: joints inside the pasted subtree map to their
        clones, joints outside it are looked up by name in this document.

        Args:
            source: Document holding the subtree
            node_id: Subtree root in the source document
            target_id: 'add' mode: parent of the pasted root, None for the
                active scene root. 'replace' mode: node whose subtree is
                swapped for the pasted one, keeping its position
            mode: 'add' or 'replace'
            source_extensions: Extension table of the source document

        Returns:
            int: Id of the pasted subtree root

        Raises:
            ValueError: On an unknown mode or a replace without target
            NotFoundError: If a node does not exist
            ProtectedNodeError: If the replaced subtree holds a protected node
            ReferenceIntegrityError: If a skin joint cannot be resolved
        """
        if mode not in PASTE_MODES:
            raise ValueError(f"Unknown paste mode '{mode}' (expected one of {', '.join(PASTE_MODES)})")
        if mode == 'replace' and target_id is None:
            raise ValueError("Replace mode needs a target node")

        source.get_node(node_id)
        originals = list(source.iter_subtree(node_id))

        replaced: List[int] = []
        if mode == 'replace':
            target_render_id = self.mapper.require(target_id)
            replaced = list(self.document.iter_subtree(target_id))
            for member in replaced:
                node = self.document.nodes[member]
                if node.protected:
                    raise ProtectedNodeError(f"Node {member} ('{node.name}') is protected")
        else:
            parent_render_id = self._target_render_id(target_id)

        external = self._resolve_external_joints(source, originals, set(replaced))

        with self._atomic("paste"):
            importer = ResourceImporter(source, self.document, source_extensions)
            clone_ids = {original: self.document.allocate_id() for original in originals}
            for original_id in originals:
                node = source.nodes[original_id]
                self.document.nodes[clone_ids[original_id]] = Node(
                    id=clone_ids[original_id],
                    name=node.name,
                    translation=copy.copy(node.translation),
                    rotation=copy.copy(node.rotation),
                    scale=copy.copy(node.scale),
                    matrix=copy.copy(node.matrix),
                    mesh=importer.mesh(node.mesh) if node.mesh is not None else None,
                    camera=importer.camera(node.camera) if node.camera is not None else None,
                    children=[clone_ids[c] for c in node.children],
                    extras=copy.deepcopy(node.extras),
                    weights=copy.copy(node.weights),
                    load_index=None,
                )
            self.document.rebuild_parent_index()
            self._paste_skins(source, clone_ids, external, importer)
            for name in importer.extension_names:
                if name not in self.document.extensions_used:
                    self.document.extensions_used.append(name)

            new_root = clone_ids[node_id]
            if mode == 'add':
                root = self.document.nodes[new_root]
                root.name = self._unique_child_name(target_id, root.name)
                self.document.attach(new_root, parent_id=target_id)
                realize_subtree(self.document, self.render_tree, self.mapper, new_root, parent_render_id)
            else:
                parent_id, scene_positions, position = self.document.detach(target_id)
                if parent_id is not None:
                    parent_render_id = self.mapper.require(parent_id)
                else:
                    parent_render_id = self.mapper.scene_group(scene_positions[0][0])
                render_index = self.render_tree.children_of(parent_render_id).index(target_render_id)
                self.render_tree.dispose_resources(target_render_id)
                self.render_tree.remove_object(target_render_id)
                for member in replaced:
                    self.mapper.remove(member)
                self.document.remove_nodes(replaced)
                if parent_id is not None:
                    self.document.attach(new_root, parent_id=parent_id, index=position)
                else:
                    scene_index, position = scene_positions[0]
                    self.document.attach(new_root, scene_index=scene_index, index=position)
                realize_subtree(self.document, self.render_tree, self.mapper, new_root,
                                parent_render_id, index=render_index)

        copied = ', '.join(f"{count} {pool}" for pool, count in importer.summary().items() if count)
        logger.info("Pasted node %s as %s (%s mode, %d nodes, copied %s)", node_id, new_root, mode,
                    len(clone_ids), copied or 'no resources')
        return new_root

    def _resolve_external_joints(self, source: Document, originals, excluded) -> Dict[int, Optional[int]]:
        """Map skin joints outside the pasted subtree to namesakes in this document"""
        inside = set(originals)
        by_name: Dict[str, int] = {}
        for candidate_id in sorted(self.document.nodes):
            name = self.document.nodes[candidate_id].name
            if name and candidate_id not in excluded and name not in by_name:
                by_name[name] = candidate_id

        resolved: Dict[int, Optional[int]] = {}
        skins = sorted({source.nodes[n].skin for n in originals if source.nodes[n].skin is not None})
        for skin_index in skins:
            if not 0 <= skin_index < len(source.skins):
                raise ReferenceIntegrityError(f"Source skin {skin_index} does not exist")
            skin = source.skins[skin_index]
            for joint in skin.joints:
                if joint in inside or joint in resolved:
                    continue
                name = source.nodes[joint].name if joint in source.nodes else None
                if name not in by_name:
                    raise ReferenceIntegrityError(
                        f"Skin '{skin.name}' joint {joint} ('{name}') has no namesake in the target document")
                resolved[joint] = by_name[name]
            if skin.skeleton is not None and skin.skeleton not in inside and skin.skeleton not in resolved:
                name = source.nodes[skin.skeleton].name if skin.skeleton in source.nodes else None
                resolved[skin.skeleton] = by_name.get(name)
        return resolved

    def _paste_skins(self, source: Document, clone_ids, external, importer):
        new_skins: Dict[int, int] = {}
        for original_id, clone_id in clone_ids.items():
            skin_index = source.nodes[original_id].skin
            if skin_index is None:
                continue
            if skin_index not in new_skins:
                skin = source.skins[skin_index]
                mapping = {**external, **clone_ids}
                self.document.skins.append(Skin(
                    name=skin.name,
                    joints=[mapping[j] for j in skin.joints],
                    inverse_bind_matrices=skin.inverse_bind_matrices.copy(),
                    skeleton=mapping.get(skin.skeleton) if skin.skeleton is not None else None,
                    extras=copy.deepcopy(skin.extras),
                    extensions=copy.deepcopy(skin.extensions),
                ))
                importer.note_extensions(skin.extensions)
                new_skins[skin_index] = len(self.document.skins) - 1
            self.document.nodes[clone_id].skin = new_skins[skin_index]

    def _unique_child_name(self, parent_id, name):
        if not name:
            return name
        if parent_id is not None:
            siblings = self.document.get_node(parent_id).children
        else:
            siblings = self.document.scenes[self.document.active_scene].nodes
        taken = {self.document.nodes[s].name for s in siblings if s in self.document.nodes}
        unique, counter = name, 1
        while unique in taken:
            unique = f"{name}_{counter}"
            counter += 1
        return unique

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, node_id) -> int:
        """Remove a subtree from both trees

        Skin joints, inverse bind rows and animation channels referring to
        removed nodes are pruned; animations left without channels are
        removed.

        Returns:
            int: Number of removed nodes

        Raises:
            NotFoundError: If the node is not mapped
            ProtectedNodeError: If the node or a descendant is protected
        """
        render_id = self.mapper.require(node_id)
        subtree = list(self.document.iter_subtree(node_id))
        for member in subtree:
            node = self.document.nodes[member]
            if node.protected:
                raise ProtectedNodeError(f"Node {member} ('{node.name}') is protected")

        with self._atomic("delete"):
            self.document.detach(node_id)
            self.render_tree.dispose_resources(render_id)
            self.render_tree.remove_object(render_id)
            for member in subtree:
                self.mapper.remove(member)
            pruned = self.document.remove_nodes(subtree)

        logger.info("Deleted %d nodes (pruned %d joints, %d channels, %d animations)",
                    len(subtree), pruned['joints'], pruned['channels'], pruned['animations'])
        return len(subtree)

    # ------------------------------------------------------------------
    # Transforms
    # ------------------------------------------------------------------

    def update_transform(self, node_id, translation=None, rotation=None, scale=None):
        """Set TRS components on a node and its render object

        Args:
            node_id: Node to update
            translation: [x, y, z] or None to keep
            rotation: [x, y, z, w] or None to keep
            scale: [sx, sy, sz] or None to keep
        """
        for label, values, size in (('translation', translation, 3),
                                    ('rotation', rotation, 4),
                                    ('scale', scale, 3)):
            if values is not None and len(values) != size:
                raise ValueError(f"{label} needs {size} components, got {len(values)}")

        render_id = self.mapper.require(node_id)
        node = self.document.get_node(node_id)
        with self._atomic("update_transform"):
            node.set_trs(translation, rotation, scale)
            self.render_tree.set_transform(render_id, node.local_matrix())

    def set_protected(self, node_id, protected=True):
        self.document.get_node(node_id).protected = protected

    def protected_nodes(self) -> List[int]:
        return [n.id for n in self.document.nodes.values() if n.protected]

    def check_invariants(self) -> Optional[str]:
        """Describe the first inconsistency between document and mapper, or None"""
        reachable = self.document.reachable_node_ids()
        if len(reachable) != len(self.mapper):
            return f"{len(reachable)} reachable nodes but {len(self.mapper)} mappings"
        for node_id in reachable:
            if self.mapper.find_mapping(node_id) is None:
                return f"Node {node_id} is reachable but not mapped"
        return None
