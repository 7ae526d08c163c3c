#!/usr/bin/env python3
"""
glTF Reader Module
Builds a Document from a GLB container.

Handles:
- Accessor decoding (component types, normalization, strides, sparse data,
  embedded data URIs) into numpy arrays
- Node arena construction with index -> id translation
- Skins, scenes and animations, with reference checks
"""

import base64
import copy
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np

from core.document import (
    Animation,
    AnimationChannel,
    AnimationSampler,
    Document,
    Material,
    Node,
    Scene,
    Skin,
)
from core.errors import ReferenceIntegrityError
from core import extension_preserver
from core.extension_preserver import ExtensionTable

from .base_reader import BaseReader

COMPONENT_DTYPES = {
    5120: np.int8,
    5121: np.uint8,
    5122: np.int16,
    5123: np.uint16,
    5125: np.uint32,
    5126: np.float32,
}

NORMALIZE_DIVISORS = {
    5120: 127.0,
    5121: 255.0,
    5122: 32767.0,
    5123: 65535.0,
}

TYPE_COMPONENTS = {
    'SCALAR': 1,
    'VEC2': 2,
    'VEC3': 3,
    'VEC4': 4,
    'MAT2': 4,
    'MAT3': 9,
    'MAT4': 16,
}

# Root members modelled by Document; anything else is carried through
KNOWN_ROOT_KEYS = {
    'asset', 'scene', 'scenes', 'nodes', 'meshes', 'materials', 'textures',
    'images', 'samplers', 'cameras', 'skins', 'animations', 'accessors',
    'bufferViews', 'buffers', 'extensionsUsed', 'extensionsRequired',
    'extensions', 'extras',
}

DATA_URI_PREFIX = 'data:'


@dataclass
class LoadedAsset:
    """Result of reading a GLB file

    Attributes:
        document: Structural document
        extensions: Extension snapshots captured at load
        raw_json: Parsed JSON chunk as loaded
        version: Container version
    """
    document: Document
    extensions: ExtensionTable
    raw_json: Dict[str, Any]
    version: int


def buffer_data(gltf: Dict[str, Any], binary: Optional[bytes], buffer_index: int) -> bytes:
    """Bytes of one buffer (GLB chunk or embedded data URI)

    Raises:
        ReferenceIntegrityError: If the buffer is missing or external
    """
    buffers = gltf.get('buffers', [])
    if not 0 <= buffer_index < len(buffers):
        raise ReferenceIntegrityError(f"Buffer {buffer_index} does not exist")

    uri = buffers[buffer_index].get('uri')
    if uri is None:
        if buffer_index != 0 or binary is None:
            raise ReferenceIntegrityError(f"Buffer {buffer_index} has no uri and no binary chunk")
        return binary
    if uri.startswith(DATA_URI_PREFIX) and ';base64,' in uri:
        return base64.b64decode(uri.split(';base64,', 1)[1])
    raise ReferenceIntegrityError(f"Buffer {buffer_index} references external file '{uri}'")


def _view_bytes(gltf, binary, view_index):
    views = gltf.get('bufferViews', [])
    if not 0 <= view_index < len(views):
        raise ReferenceIntegrityError(f"BufferView {view_index} does not exist")
    view = views[view_index]
    data = buffer_data(gltf, binary, view.get('buffer', 0))
    start = view.get('byteOffset', 0)
    end = start + view['byteLength']
    if end > len(data):
        raise ReferenceIntegrityError(
            f"BufferView {view_index} spans bytes {start}-{end}, buffer has {len(data)}")
    return data[start:end], view.get('byteStride')


def _read_elements(data, offset, count, components, dtype, stride):
    itemsize = np.dtype(dtype).itemsize
    element_size = itemsize * components
    if count == 0:
        return np.zeros((0, components), dtype=dtype)
    stride = stride or element_size
    needed = offset + stride * (count - 1) + element_size
    if needed > len(data):
        raise ReferenceIntegrityError(
            f"Accessor needs {needed} bytes but its bufferView holds {len(data)}")
    if stride == element_size:
        flat = np.frombuffer(data, dtype=dtype, count=count * components, offset=offset)
        return flat.reshape(count, components).copy()
    strided = np.ndarray(shape=(count, components), dtype=dtype, buffer=data,
                         offset=offset, strides=(stride, itemsize))
    return strided.copy()


def read_accessor(gltf: Dict[str, Any], binary: Optional[bytes], accessor_index: int) -> np.ndarray:
    """Decode an accessor into a (count, components) numpy array

    Normalized integer accessors are returned as float32 in [0, 1] / [-1, 1].

    Args:
        gltf: Parsed glTF JSON
        binary: GLB binary chunk or None
        accessor_index: Accessor to read

    Returns:
        np.ndarray: Accessor data

    Raises:
        ReferenceIntegrityError: If the accessor or its storage does not resolve
    """
    accessors = gltf.get('accessors', [])
    if not 0 <= accessor_index < len(accessors):
        raise ReferenceIntegrityError(f"Accessor {accessor_index} does not exist")
    accessor = accessors[accessor_index]

    component_type = accessor.get('componentType')
    dtype = COMPONENT_DTYPES.get(component_type)
    components = TYPE_COMPONENTS.get(accessor.get('type'))
    if dtype is None or components is None:
        raise ReferenceIntegrityError(
            f"Accessor {accessor_index} has unsupported layout "
            f"{accessor.get('type')}/{component_type}")
    count = accessor.get('count', 0)

    if 'bufferView' in accessor:
        data, stride = _view_bytes(gltf, binary, accessor['bufferView'])
        values = _read_elements(data, accessor.get('byteOffset', 0), count, components, dtype, stride)
    else:
        values = np.zeros((count, components), dtype=dtype)

    sparse = accessor.get('sparse')
    if sparse:
        sparse_count = sparse['count']
        indices_info = sparse['indices']
        index_data, _ = _view_bytes(gltf, binary, indices_info['bufferView'])
        indices = _read_elements(index_data, indices_info.get('byteOffset', 0), sparse_count, 1,
                                 COMPONENT_DTYPES[indices_info['componentType']], None).reshape(-1)
        value_data, _ = _view_bytes(gltf, binary, sparse['values']['bufferView'])
        replacements = _read_elements(value_data, sparse['values'].get('byteOffset', 0),
                                      sparse_count, components, dtype, None)
        if len(indices) and int(indices.max()) >= count:
            raise ReferenceIntegrityError(f"Accessor {accessor_index} sparse index out of range")
        values[indices.astype(np.int64)] = replacements

    if accessor.get('normalized') and component_type in NORMALIZE_DIVISORS:
        values = np.maximum(values.astype(np.float32) / NORMALIZE_DIVISORS[component_type], -1.0)

    return values


class GltfReader(BaseReader):
    """Reader for GLB containers (including VRM and VRMA)"""

    def get_format_name(self) -> str:
        return "glTF Binary"

    def read_bytes(self, data: bytes) -> LoadedAsset:
        """Decode a GLB file into a Document

        Args:
            data: Complete file contents

        Returns:
            LoadedAsset: Document, extension snapshots and raw JSON

        Raises:
            MalformedContainerError: On container-level corruption
            ReferenceIntegrityError: On dangling references or a broken hierarchy
        """
        container = self.decode(data)
        gltf = container.parse_json()
        document = self.build_document(gltf, container.binary_chunk)
        table = extension_preserver.snapshot(document, gltf)
        self.log(f"Loaded {len(document.nodes)} nodes in {len(document.scenes)} scenes")
        return LoadedAsset(document=document, extensions=table, raw_json=gltf,
                           version=container.version)

    def build_document(self, gltf: Dict[str, Any], binary: Optional[bytes]) -> Document:
        document = Document()

        document.asset = copy.deepcopy(gltf.get('asset') or {'version': '2.0'})
        document.extensions_used = list(gltf.get('extensionsUsed', []))
        document.extensions_required = list(gltf.get('extensionsRequired', []))
        document.extras = copy.deepcopy(gltf.get('extras'))
        document.unknown_fields = {
            key: copy.deepcopy(value) for key, value in gltf.items() if key not in KNOWN_ROOT_KEYS
        }

        document.accessors = copy.deepcopy(gltf.get('accessors', []))
        document.buffer_views = copy.deepcopy(gltf.get('bufferViews', []))
        document.buffers = copy.deepcopy(gltf.get('buffers', []))
        document.binary = bytes(binary) if binary is not None else None

        for pool, key in (('meshes', 'meshes'), ('textures', 'textures'), ('images', 'images'),
                          ('samplers', 'samplers'), ('cameras', 'cameras')):
            setattr(document, pool, copy.deepcopy(gltf.get(key, [])))

        document.materials = [self._read_material(m) for m in gltf.get('materials', [])]

        ids = self._read_nodes(document, gltf.get('nodes', []))
        self._read_scenes(document, gltf, ids)
        document.skins = [self._read_skin(gltf, binary, i, skin, ids)
                          for i, skin in enumerate(gltf.get('skins', []))]
        document.animations = self._read_animations(gltf, ids)

        document.validate()
        return document

    @staticmethod
    def _read_material(raw):
        properties = {k: copy.deepcopy(v) for k, v in raw.items()
                      if k not in ('name', 'extensions', 'extras')}
        return Material(name=raw.get('name'), properties=properties,
                        extras=copy.deepcopy(raw.get('extras')))

    def _read_nodes(self, document: Document, raw_nodes: List[Dict[str, Any]]) -> List[int]:
        ids = [document.allocate_id() for _ in raw_nodes]

        def resolve(index, label):
            if not isinstance(index, int) or not 0 <= index < len(ids):
                raise ReferenceIntegrityError(f"{label} references missing node {index}")
            return ids[index]

        for i, raw in enumerate(raw_nodes):
            if 'matrix' in raw and any(k in raw for k in ('translation', 'rotation', 'scale')):
                self.log(f"Node {i} has both matrix and TRS; using matrix")
            uses_matrix = 'matrix' in raw
            children = [resolve(c, f"Node {i}") for c in raw.get('children', [])]

            node = Node(
                id=ids[i],
                name=raw.get('name'),
                translation=None if uses_matrix else _float_list(raw.get('translation')),
                rotation=None if uses_matrix else _float_list(raw.get('rotation')),
                scale=None if uses_matrix else _float_list(raw.get('scale')),
                matrix=_float_list(raw.get('matrix')),
                mesh=raw.get('mesh'),
                camera=raw.get('camera'),
                skin=raw.get('skin'),
                children=children,
                extras=copy.deepcopy(raw.get('extras', {})),
                weights=_float_list(raw.get('weights')),
                load_index=i,
            )
            document.nodes[node.id] = node

        document.rebuild_parent_index()
        return ids

    def _read_scenes(self, document: Document, gltf, ids):
        raw_scenes = gltf.get('scenes')
        if raw_scenes is None:
            # No scene list: present every parentless node as one scene
            roots = [node_id for node_id in ids if document.parent_of(node_id) is None]
            document.scenes = [Scene(name=None, nodes=roots)] if roots else []
            if roots:
                self.log(f"No scenes declared; created a default scene with {len(roots)} roots")
        else:
            for i, raw in enumerate(raw_scenes):
                roots = []
                for index in raw.get('nodes', []):
                    if not isinstance(index, int) or not 0 <= index < len(ids):
                        raise ReferenceIntegrityError(f"Scene {i} references missing node {index}")
                    roots.append(ids[index])
                document.scenes.append(Scene(
                    name=raw.get('name'),
                    nodes=roots,
                    extras=copy.deepcopy(raw.get('extras')),
                    extensions=copy.deepcopy(raw.get('extensions')),
                ))

        active = gltf.get('scene', 0)
        if document.scenes and not 0 <= active < len(document.scenes):
            raise ReferenceIntegrityError(f"Active scene {active} does not exist")
        document.active_scene = active if document.scenes else 0

    @staticmethod
    def _read_skin(gltf, binary, skin_index, raw, ids) -> Skin:
        joints = []
        for index in raw.get('joints', []):
            if not isinstance(index, int) or not 0 <= index < len(ids):
                raise ReferenceIntegrityError(f"Skin {skin_index} references missing joint {index}")
            joints.append(ids[index])

        skeleton = raw.get('skeleton')
        if skeleton is not None:
            if not 0 <= skeleton < len(ids):
                raise ReferenceIntegrityError(f"Skin {skin_index} references missing skeleton {skeleton}")
            skeleton = ids[skeleton]

        common = dict(
            skeleton=skeleton,
            extras=copy.deepcopy(raw.get('extras')),
            extensions=copy.deepcopy(raw.get('extensions')),
        )
        accessor = raw.get('inverseBindMatrices')
        if accessor is None:
            return Skin.with_identity_bindings(raw.get('name'), joints, **common)

        matrices = read_accessor(gltf, binary, accessor)
        return Skin(name=raw.get('name'), joints=joints, inverse_bind_matrices=matrices,
                    accessor=accessor, **common)

    def _read_animations(self, gltf, ids) -> List[Animation]:
        accessor_count = len(gltf.get('accessors', []))
        animations = []

        for a, raw in enumerate(gltf.get('animations', [])):
            samplers = [
                AnimationSampler(
                    input=s.get('input', -1),
                    output=s.get('output', -1),
                    interpolation=s.get('interpolation', 'LINEAR'),
                    extras=copy.deepcopy(s.get('extras')),
                )
                for s in raw.get('samplers', [])
            ]

            channels = []
            for c, channel in enumerate(raw.get('channels', [])):
                try:
                    channels.append(self._read_channel(channel, samplers, ids, accessor_count))
                except ReferenceIntegrityError as e:
                    self.log(f"Skipping channel {c} of animation {a}: {e}")

            if not channels:
                self.log(f"Dropping animation {a} ('{raw.get('name')}'): no usable channels")
                continue

            animations.append(Animation(
                name=raw.get('name'),
                channels=channels,
                samplers=samplers,
                extras=copy.deepcopy(raw.get('extras')),
                extensions=copy.deepcopy(raw.get('extensions')),
            ))
        return animations

    @staticmethod
    def _read_channel(raw, samplers, ids, accessor_count) -> AnimationChannel:
        sampler_index = raw.get('sampler')
        if not isinstance(sampler_index, int) or not 0 <= sampler_index < len(samplers):
            raise ReferenceIntegrityError(f"sampler {sampler_index} does not exist")
        sampler = samplers[sampler_index]
        for accessor in (sampler.input, sampler.output):
            if not 0 <= accessor < accessor_count:
                raise ReferenceIntegrityError(f"sampler accessor {accessor} does not exist")

        target = raw.get('target', {})
        path = target.get('path')
        if path not in ('translation', 'rotation', 'scale', 'weights') and not target.get('extensions'):
            raise ReferenceIntegrityError(f"unsupported target path '{path}'")

        node_index = target.get('node')
        node_id = None
        if node_index is not None:
            if not isinstance(node_index, int) or not 0 <= node_index < len(ids):
                raise ReferenceIntegrityError(f"target node {node_index} does not exist")
            node_id = ids[node_index]

        return AnimationChannel(
            target_node=node_id,
            path=path,
            sampler=sampler_index,
            target_extensions=copy.deepcopy(target.get('extensions')),
            extras=copy.deepcopy(raw.get('extras')),
        )


def _float_list(values) -> Optional[List[float]]:
    if values is None:
        return None
    return [float(v) for v in values]
