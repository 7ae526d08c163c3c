#!/usr/bin/env python3
"""
Document Module
Structural (non-rendered) representation of a glTF asset.

Nodes live in an arena keyed by opaque integer ids. Parent/child relations
are adjacency lists over those ids plus a maintained parent index, so cycle
checks and deletions are walks over ids rather than object graphs. Pools the
engine does not interpret (meshes, textures, images, samplers, cameras) are
kept as their source JSON.
"""

import base64
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from .errors import NotFoundError, ReferenceIntegrityError
from .transforms import compose_matrix, decompose_matrix, matrix_from_gltf, matrix_to_gltf

logger = logging.getLogger(__name__)

# Pools copied by value into snapshots besides the node arena and buffers
RESOURCE_POOLS = ('meshes', 'materials', 'textures', 'images', 'samplers', 'cameras')


@dataclass
class Node:
    """Single scene node

    Attributes:
        id: Stable opaque identity (never reused within a document)
        name: Optional node name
        translation: [x, y, z] or None
        rotation: [x, y, z, w] quaternion or None
        scale: [sx, sy, sz] or None
        matrix: 16 floats column-major, mutually exclusive with TRS
        mesh: Mesh pool index or None
        camera: Camera pool index or None
        skin: Skin pool index or None
        children: Ordered child node ids
        extras: Opaque extras bag
        weights: Morph target weights, carried through
        load_index: Index in the source JSON, None for nodes created by edits
        protected: Rejects delete and move when set
    """
    id: int
    name: Optional[str] = None
    translation: Optional[List[float]] = None
    rotation: Optional[List[float]] = None
    scale: Optional[List[float]] = None
    matrix: Optional[List[float]] = None
    mesh: Optional[int] = None
    camera: Optional[int] = None
    skin: Optional[int] = None
    children: List[int] = field(default_factory=list)
    extras: Any = field(default_factory=dict)
    weights: Optional[List[float]] = None
    load_index: Optional[int] = None
    protected: bool = False

    @property
    def uses_matrix(self) -> bool:
        return self.matrix is not None

    def local_matrix(self) -> np.ndarray:
        """Local transform as a 4x4 matrix"""
        if self.matrix is not None:
            return matrix_from_gltf(self.matrix)
        return compose_matrix(self.translation, self.rotation, self.scale)

    def set_trs(self, translation=None, rotation=None, scale=None):
        """Replace the local transform with TRS components

        Components left as None keep their current value. Switching to TRS
        drops a raw matrix (decomposed first so unspecified parts survive).
        """
        if self.matrix is not None:
            t, r, s = decompose_matrix(matrix_from_gltf(self.matrix))
            self.translation, self.rotation, self.scale = t, r, s
            self.matrix = None
        if translation is not None:
            self.translation = [float(v) for v in translation]
        if rotation is not None:
            self.rotation = [float(v) for v in rotation]
        if scale is not None:
            self.scale = [float(v) for v in scale]

    def set_local_matrix(self, matrix):
        """Replace the local transform, keeping the node's representation"""
        if self.matrix is not None:
            self.matrix = matrix_to_gltf(matrix)
        else:
            self.translation, self.rotation, self.scale = decompose_matrix(matrix)


@dataclass
class Scene:
    """Ordered list of root node ids"""
    name: Optional[str] = None
    nodes: List[int] = field(default_factory=list)
    extras: Any = None
    extensions: Optional[Dict[str, Any]] = None


@dataclass
class Material:
    """Material record

    Attributes:
        name: Material name
        properties: Source JSON without 'name', 'extensions' and 'extras'
        extras: Extras bag
        extensions: Inline extensions of materials created by edits; loaded
            materials keep theirs in the extension table
    """
    name: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    extras: Any = None
    extensions: Optional[Dict[str, Any]] = None


@dataclass
class Skin:
    """Joint list plus per-joint inverse bind matrices

    Attributes:
        name: Skin name
        joints: Ordered joint node ids
        inverse_bind_matrices: (n, 16) float32 array, glTF column-major rows
        skeleton: Skeleton root node id or None
        accessor: Source accessor index; None once the joint list changed
        extras: Opaque extras
        extensions: Inline extensions, carried through
    """
    name: Optional[str]
    joints: List[int]
    inverse_bind_matrices: np.ndarray
    skeleton: Optional[int] = None
    accessor: Optional[int] = None
    extras: Any = None
    extensions: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        self.inverse_bind_matrices = np.asarray(
            self.inverse_bind_matrices, dtype=np.float32).reshape(-1, 16)
        if len(self.joints) != len(self.inverse_bind_matrices):
            raise ReferenceIntegrityError(
                f"Skin '{self.name}' has {len(self.joints)} joints but "
                f"{len(self.inverse_bind_matrices)} inverse bind matrices"
            )

    @classmethod
    def with_identity_bindings(cls, name, joints, **kwargs):
        identity = np.tile(np.identity(4, dtype=np.float32).reshape(16), (len(joints), 1))
        return cls(name=name, joints=list(joints), inverse_bind_matrices=identity, **kwargs)


@dataclass
class AnimationSampler:
    input: int
    output: int
    interpolation: str = 'LINEAR'
    extras: Any = None


@dataclass
class AnimationChannel:
    """Binds a sampler to a target node property

    Attributes:
        target_node: Node id, None when an extension supplies the target
        path: 'translation', 'rotation', 'scale' or 'weights'
        sampler: Index into the owning animation's samplers
        target_extensions: Inline target extensions, carried through
    """
    target_node: Optional[int]
    path: str
    sampler: int
    target_extensions: Optional[Dict[str, Any]] = None
    extras: Any = None


@dataclass
class Animation:
    name: Optional[str] = None
    channels: List[AnimationChannel] = field(default_factory=list)
    samplers: List[AnimationSampler] = field(default_factory=list)
    extras: Any = None
    extensions: Optional[Dict[str, Any]] = None


@dataclass
class DocumentSnapshot:
    """Complete structural copy of a document, used by undo/redo"""
    nodes: Dict[int, Node]
    scenes: List[Scene]
    active_scene: int
    skins: List[Skin]
    animations: List[Animation]
    accessors: List[Dict[str, Any]]
    buffer_views: List[Dict[str, Any]]
    buffers: List[Dict[str, Any]]
    binary: Optional[bytes]
    next_id: int
    meshes: List[Dict[str, Any]] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    textures: List[Dict[str, Any]] = field(default_factory=list)
    images: List[Dict[str, Any]] = field(default_factory=list)
    samplers: List[Dict[str, Any]] = field(default_factory=list)
    cameras: List[Dict[str, Any]] = field(default_factory=list)
    extensions_used: List[str] = field(default_factory=list)


class Document:
    """Owns every pool of a loaded asset

    All edge mutations go through attach()/detach() so the parent index
    stays consistent with the children lists.
    """

    def __init__(self):
        self.asset: Dict[str, Any] = {'version': '2.0'}
        self.extensions_used: List[str] = []
        self.extensions_required: List[str] = []
        self.extras: Any = None
        self.unknown_fields: Dict[str, Any] = {}

        self.nodes: Dict[int, Node] = {}
        self.scenes: List[Scene] = []
        self.active_scene: int = 0

        self.meshes: List[Dict[str, Any]] = []
        self.materials: List[Material] = []
        self.textures: List[Dict[str, Any]] = []
        self.images: List[Dict[str, Any]] = []
        self.samplers: List[Dict[str, Any]] = []
        self.cameras: List[Dict[str, Any]] = []
        self.skins: List[Skin] = []
        self.animations: List[Animation] = []

        self.accessors: List[Dict[str, Any]] = []
        self.buffer_views: List[Dict[str, Any]] = []
        self.buffers: List[Dict[str, Any]] = []
        self.binary: Optional[bytes] = None

        self.owner = None
        self._next_id = 1
        self._parents: Dict[int, int] = {}

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def claim(self, owner):
        """Bind this document to a single manager"""
        if self.owner is not None and self.owner is not owner:
            raise ValueError("Document is already owned by another manager")
        self.owner = owner

    # ------------------------------------------------------------------
    # Node arena
    # ------------------------------------------------------------------

    def allocate_id(self) -> int:
        node_id = self._next_id
        self._next_id += 1
        return node_id

    def create_node(self, **kwargs) -> Node:
        node = Node(id=self.allocate_id(), **kwargs)
        self.nodes[node.id] = node
        return node

    def get_node(self, node_id) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise NotFoundError(f"Node {node_id} does not exist")
        return node

    def has_node(self, node_id) -> bool:
        return node_id in self.nodes

    def parent_of(self, node_id) -> Optional[int]:
        """Parent node id, or None for scene roots and orphans"""
        return self._parents.get(node_id)

    def scenes_of(self, node_id) -> List[int]:
        """Indices of scenes listing node_id as a root"""
        return [i for i, scene in enumerate(self.scenes) if node_id in scene.nodes]

    def is_ancestor(self, ancestor_id, node_id) -> bool:
        """True if ancestor_id is node_id or one of its ancestors"""
        current = node_id
        while current is not None:
            if current == ancestor_id:
                return True
            current = self._parents.get(current)
        return False

    def iter_subtree(self, node_id) -> Iterator[int]:
        """Pre-order ids of node_id and all its descendants"""
        stack = [node_id]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(self.nodes[current].children))

    def reachable_node_ids(self) -> List[int]:
        """Ids reachable from any scene, in scene/document order, no duplicates"""
        seen = set()
        ordered = []
        for scene in self.scenes:
            for root_id in scene.nodes:
                if root_id in seen:
                    continue
                for node_id in self.iter_subtree(root_id):
                    if node_id not in seen:
                        seen.add(node_id)
                        ordered.append(node_id)
        return ordered

    def world_matrix(self, node_id) -> np.ndarray:
        """World matrix of a node (product of ancestor local matrices)"""
        matrix = np.identity(4)
        current = node_id
        while current is not None:
            matrix = self.nodes[current].local_matrix() @ matrix
            current = self._parents.get(current)
        return matrix

    def find_nodes_by_name(self, query, exact=True) -> List[Node]:
        """Search nodes by name

        Args:
            query: Name (exact) or case-insensitive substring (partial)
            exact: Exact match when True, substring match otherwise

        Returns:
            list: Matching nodes in arena order
        """
        if exact:
            return [n for n in self.nodes.values() if n.name == query]
        needle = query.lower()
        return [n for n in self.nodes.values() if n.name and needle in n.name.lower()]

    def find_node_by_name(self, name) -> Optional[Node]:
        matches = self.find_nodes_by_name(name, exact=True)
        return matches[0] if matches else None

    def joint_node_ids(self) -> List[int]:
        """Ids used as skin joints, in skin order, no duplicates"""
        ordered = []
        seen = set()
        for skin in self.skins:
            for joint in skin.joints:
                if joint not in seen:
                    seen.add(joint)
                    ordered.append(joint)
        return ordered

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def attach(self, node_id, parent_id=None, scene_index=None, index=None):
        """Attach a detached node under a node or as a scene root

        Args:
            node_id: Node to attach (must have no parent)
            parent_id: New parent node id, or None for a scene root
            scene_index: Scene used when parent_id is None (default: active)
            index: Insert position, None appends
        """
        if node_id in self._parents:
            raise ReferenceIntegrityError(
                f"Node {node_id} already has parent {self._parents[node_id]}")

        if parent_id is not None:
            siblings = self.get_node(parent_id).children
            self._parents[node_id] = parent_id
        else:
            if scene_index is None:
                scene_index = self.active_scene
            siblings = self.scenes[scene_index].nodes

        if index is None:
            siblings.append(node_id)
        else:
            siblings.insert(index, node_id)

    def detach(self, node_id) -> Tuple[Optional[int], List[Tuple[int, int]], Optional[int]]:
        """Remove a node from its parent and from every scene root list

        Returns:
            tuple: (parent_id, [(scene_index, position), ...], position under parent)
        """
        parent_id = self._parents.pop(node_id, None)
        position = None
        if parent_id is not None:
            children = self.nodes[parent_id].children
            position = children.index(node_id)
            children.pop(position)

        scene_positions = []
        for i, scene in enumerate(self.scenes):
            if node_id in scene.nodes:
                scene_positions.append((i, scene.nodes.index(node_id)))
                scene.nodes.remove(node_id)

        return parent_id, scene_positions, position

    def rebuild_parent_index(self):
        """Recompute the parent index from the children lists

        Raises:
            ReferenceIntegrityError: If a child id is unknown or has two parents
        """
        parents = {}
        for node in self.nodes.values():
            for child_id in node.children:
                if child_id not in self.nodes:
                    raise ReferenceIntegrityError(
                        f"Node {node.id} references missing child {child_id}")
                if child_id in parents:
                    raise ReferenceIntegrityError(
                        f"Node {child_id} has more than one parent "
                        f"({parents[child_id]} and {node.id})")
                parents[child_id] = node.id
        self._parents = parents

    # ------------------------------------------------------------------
    # Deletion support
    # ------------------------------------------------------------------

    def remove_nodes(self, node_ids) -> Dict[str, int]:
        """Drop nodes from the arena and prune references to them

        Skins lose the removed joints together with their inverse bind rows,
        animation channels targeting removed nodes are dropped, and
        animations left without channels are removed.

        Args:
            node_ids: Ids to remove (callers detach the subtree root first)

        Returns:
            dict: Counts of pruned 'joints', 'channels' and 'animations'
        """
        removed = set(node_ids)
        for node_id in removed:
            self._parents.pop(node_id, None)
            for scene in self.scenes:
                if node_id in scene.nodes:
                    scene.nodes.remove(node_id)
        for node_id in removed:
            self.nodes.pop(node_id, None)

        pruned = {'joints': 0, 'channels': 0, 'animations': 0}

        for skin_index, skin in enumerate(self.skins):
            keep = [i for i, joint in enumerate(skin.joints) if joint not in removed]
            if len(keep) != len(skin.joints):
                pruned['joints'] += len(skin.joints) - len(keep)
                skin.joints = [skin.joints[i] for i in keep]
                skin.inverse_bind_matrices = skin.inverse_bind_matrices[keep]
                skin.accessor = None
                if not skin.joints:
                    for node in self.nodes.values():
                        if node.skin == skin_index:
                            node.skin = None
            if skin.skeleton in removed:
                skin.skeleton = None

        surviving = []
        for animation in self.animations:
            before = len(animation.channels)
            animation.channels = [
                c for c in animation.channels
                if c.target_node is None or c.target_node not in removed
            ]
            pruned['channels'] += before - len(animation.channels)
            if animation.channels:
                surviving.append(animation)
            else:
                pruned['animations'] += 1
                logger.info("Animation '%s' lost all channels and was removed", animation.name)
        self.animations = surviving

        return pruned

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------

    def glb_buffer_index(self) -> Optional[int]:
        """Index of the buffer backed by the GLB binary chunk, if any"""
        if self.buffers and 'uri' not in self.buffers[0]:
            return 0
        return None

    def append_buffer_data(self, data: bytes) -> int:
        """Append bytes to the GLB buffer and create a bufferView for them

        Creates the GLB buffer (index 0) when the document has none.

        Returns:
            int: Index of the new bufferView
        """
        if self.glb_buffer_index() is None:
            # The binary chunk buffer must come first; shift existing views
            for view in self.buffer_views:
                view['buffer'] = view.get('buffer', 0) + 1
            self.buffers.insert(0, {'byteLength': 0})
            self.binary = b''

        blob = self.binary or b''
        padding = (4 - len(blob) % 4) % 4
        offset = len(blob) + padding
        self.binary = blob + b'\x00' * padding + bytes(data)
        self.buffers[0]['byteLength'] = len(self.binary)

        self.buffer_views.append({
            'buffer': 0,
            'byteOffset': offset,
            'byteLength': len(data),
        })
        return len(self.buffer_views) - 1

    def buffer_bytes(self, buffer_index) -> bytes:
        """Contents of the GLB buffer or of an embedded data URI buffer

        Raises:
            ReferenceIntegrityError: If the buffer is missing or external
        """
        if not 0 <= buffer_index < len(self.buffers):
            raise ReferenceIntegrityError(f"Buffer {buffer_index} does not exist")
        uri = self.buffers[buffer_index].get('uri')
        if uri is None:
            if buffer_index != 0 or self.binary is None:
                raise ReferenceIntegrityError(f"Buffer {buffer_index} has no uri and no binary chunk")
            return self.binary
        if uri.startswith('data:') and ';base64,' in uri:
            return base64.b64decode(uri.split(';base64,', 1)[1])
        raise ReferenceIntegrityError(f"Buffer {buffer_index} references external file '{uri}'")

    def view_bytes(self, view_index) -> bytes:
        """Byte range covered by one bufferView"""
        if not 0 <= view_index < len(self.buffer_views):
            raise ReferenceIntegrityError(f"BufferView {view_index} does not exist")
        view = self.buffer_views[view_index]
        data = self.buffer_bytes(view.get('buffer', 0))
        start = view.get('byteOffset', 0)
        end = start + view['byteLength']
        if end > len(data):
            raise ReferenceIntegrityError(
                f"BufferView {view_index} spans bytes {start}-{end}, buffer has {len(data)}")
        return data[start:end]

    def add_accessor(self, accessor: Dict[str, Any]) -> int:
        self.accessors.append(accessor)
        return len(self.accessors) - 1

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self):
        """Check that every reference resolves and the hierarchy is a forest

        Raises:
            ReferenceIntegrityError: On the first dangling reference or cycle
        """
        self.rebuild_parent_index()

        for i, scene in enumerate(self.scenes):
            for root_id in scene.nodes:
                if root_id not in self.nodes:
                    raise ReferenceIntegrityError(f"Scene {i} references missing node {root_id}")
                if root_id in self._parents:
                    raise ReferenceIntegrityError(
                        f"Scene {i} root node {root_id} also has parent {self._parents[root_id]}")

        for node in self.nodes.values():
            self._check_index(node.mesh, self.meshes, f"Node {node.id} mesh")
            self._check_index(node.camera, self.cameras, f"Node {node.id} camera")
            self._check_index(node.skin, self.skins, f"Node {node.id} skin")

        for node_id in self.nodes:
            visited = set()
            current = node_id
            while current is not None:
                if current in visited:
                    raise ReferenceIntegrityError(f"Node hierarchy contains a cycle at node {node_id}")
                visited.add(current)
                current = self._parents.get(current)

        for i, skin in enumerate(self.skins):
            for joint in skin.joints:
                if joint not in self.nodes:
                    raise ReferenceIntegrityError(f"Skin {i} references missing joint {joint}")
            if skin.skeleton is not None and skin.skeleton not in self.nodes:
                raise ReferenceIntegrityError(f"Skin {i} references missing skeleton {skin.skeleton}")

    @staticmethod
    def _check_index(index, pool, label):
        if index is not None and not 0 <= index < len(pool):
            raise ReferenceIntegrityError(f"{label} index {index} is out of range ({len(pool)})")

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> DocumentSnapshot:
        return DocumentSnapshot(
            nodes=copy.deepcopy(self.nodes),
            scenes=copy.deepcopy(self.scenes),
            active_scene=self.active_scene,
            skins=copy.deepcopy(self.skins),
            animations=copy.deepcopy(self.animations),
            accessors=copy.deepcopy(self.accessors),
            buffer_views=copy.deepcopy(self.buffer_views),
            buffers=copy.deepcopy(self.buffers),
            binary=self.binary,
            next_id=self._next_id,
            extensions_used=list(self.extensions_used),
            **{pool: copy.deepcopy(getattr(self, pool)) for pool in RESOURCE_POOLS},
        )

    def restore(self, snapshot: DocumentSnapshot):
        """Replace structural state with a snapshot (the snapshot stays reusable)"""
        self.nodes = copy.deepcopy(snapshot.nodes)
        self.scenes = copy.deepcopy(snapshot.scenes)
        self.active_scene = snapshot.active_scene
        self.skins = copy.deepcopy(snapshot.skins)
        self.animations = copy.deepcopy(snapshot.animations)
        self.accessors = copy.deepcopy(snapshot.accessors)
        self.buffer_views = copy.deepcopy(snapshot.buffer_views)
        self.buffers = copy.deepcopy(snapshot.buffers)
        self.binary = snapshot.binary
        self._next_id = snapshot.next_id
        self.extensions_used = list(snapshot.extensions_used)
        for pool in RESOURCE_POOLS:
            setattr(self, pool, copy.deepcopy(getattr(snapshot, pool)))
        self.rebuild_parent_index()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def describe_hierarchy(self, include_ids=True) -> List[Dict[str, Any]]:
        """Nested scene/node description for tree views

        Args:
            include_ids: Include node ids; disable to compare two documents
                structurally regardless of regenerated ids

        Returns:
            list: One dict per scene with nested 'nodes'
        """
        def describe(node_id):
            node = self.nodes[node_id]
            entry = {
                'name': node.name,
                'translation': node.translation,
                'rotation': node.rotation,
                'scale': node.scale,
                'matrix': node.matrix,
                'mesh': node.mesh,
                'camera': node.camera,
                'skin': node.skin,
                'children': [describe(child) for child in node.children],
            }
            if include_ids:
                entry['id'] = node.id
            return entry

        return [
            {
                'name': scene.name or f"Scene {i}",
                'active': i == self.active_scene,
                'nodes': [describe(root_id) for root_id in scene.nodes],
            }
            for i, scene in enumerate(self.scenes)
        ]

    def resource_counts(self) -> Dict[str, int]:
        return {
            'scenes': len(self.scenes),
            'nodes': len(self.nodes),
            'meshes': len(self.meshes),
            'materials': len(self.materials),
            'textures': len(self.textures),
            'animations': len(self.animations),
            'skins': len(self.skins),
            'extensions': len(self.extensions_used),
        }
