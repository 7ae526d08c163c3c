#!/usr/bin/env python3
"""
GLB Exporter Module
Serializes a Document back to glTF JSON and a GLB container.

Nodes are written in arena order, so every index in the output is
recomputed from ids. Skins whose joint list changed get a fresh inverse
bind matrix accessor; the original buffers are never modified. Extension
snapshots captured at load are merged back in as the last JSON step.
"""

import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np

from core import extension_preserver
from core.document import Document
from core.errors import SceneSyncError
from core.extension_preserver import ExtensionTable
from readers.glb_container import encode_container

from .base_exporter import BaseExporter


class GlbExporter(BaseExporter):
    """Writes documents as binary glTF"""

    def get_format_name(self):
        return "glTF Binary"

    def export(self, document: Document, output_path, extensions: ExtensionTable = None):
        """Export a document to a .glb/.vrm file

        Args:
            document: Document to write
            output_path: Destination file path
            extensions: Extension snapshots captured at load, or None

        Returns:
            dict: Export results with keys:
                - 'success': bool
                - 'glb_file': Path to created file
                - 'bytes': Size of the written file
                - 'message': Status message
                - 'files': List of created files
        """
        try:
            path = self.validate_output_path(output_path)
            data = self.export_bytes(document, extensions)
            path.write_bytes(data)
            self.log(f"Wrote {path.name} ({len(data)} bytes)")
            return {
                'success': True,
                'glb_file': str(path),
                'bytes': len(data),
                'message': f"Exported {len(document.nodes)} nodes, {len(document.animations)} animations",
                'files': [str(path)],
            }
        except (SceneSyncError, OSError, ValueError) as e:
            self.log(f"ERROR: {e}")
            return {
                'success': False,
                'message': f"Export failed: {e}",
                'files': [],
            }

    def export_bytes(self, document: Document, extensions: Optional[ExtensionTable] = None) -> bytes:
        """Serialize a document to GLB bytes"""
        gltf, binary = self.serialize(document, extensions)
        json_text = json.dumps(gltf, separators=(',', ':'), ensure_ascii=False)
        return encode_container(json_text, binary, self.config)

    def serialize(self, document: Document,
                  extensions: Optional[ExtensionTable] = None) -> Tuple[Dict[str, Any], Optional[bytes]]:
        """Build the glTF JSON dict and binary chunk for a document

        Args:
            document: Document to serialize (left unmodified)
            extensions: Extension snapshots to merge back, or None

        Returns:
            tuple: (gltf dict, binary chunk or None)
        """
        # Work on private copies of the buffer pools; fresh IBM accessors go there
        work = copy.copy(document)
        work.accessors = copy.deepcopy(document.accessors)
        work.buffer_views = copy.deepcopy(document.buffer_views)
        work.buffers = copy.deepcopy(document.buffers)

        node_index = {node_id: i for i, node_id in enumerate(document.nodes)}
        skin_index, skins = self._serialize_skins(work, node_index)
        nodes = [self._serialize_node(node, node_index, skin_index) for node in document.nodes.values()]

        gltf: Dict[str, Any] = {}
        asset = copy.deepcopy(document.asset)
        asset.setdefault('version', '2.0')
        asset.setdefault('generator', self.config.generator)
        gltf['asset'] = asset

        if document.extensions_used:
            gltf['extensionsUsed'] = list(document.extensions_used)
        if document.extensions_required:
            gltf['extensionsRequired'] = list(document.extensions_required)

        if document.scenes:
            gltf['scene'] = document.active_scene
            gltf['scenes'] = [self._serialize_scene(scene, node_index) for scene in document.scenes]

        pools = (
            ('nodes', nodes),
            ('meshes', copy.deepcopy(document.meshes)),
            ('materials', [self._serialize_material(m) for m in document.materials]),
            ('textures', copy.deepcopy(document.textures)),
            ('images', copy.deepcopy(document.images)),
            ('samplers', copy.deepcopy(document.samplers)),
            ('cameras', copy.deepcopy(document.cameras)),
            ('skins', skins),
            ('animations', self._serialize_animations(document, node_index)),
            ('accessors', work.accessors),
            ('bufferViews', work.buffer_views),
            ('buffers', work.buffers),
        )
        for key, values in pools:
            if values:
                gltf[key] = values

        if document.extras is not None:
            gltf['extras'] = copy.deepcopy(document.extras)
        for key, value in document.unknown_fields.items():
            gltf[key] = copy.deepcopy(value)

        if work.glb_buffer_index() is not None and work.binary is not None:
            work.buffers[0]['byteLength'] = len(work.binary)

        if extensions is not None:
            index_maps = {
                'nodes': {node.load_index: node_index[node.id]
                          for node in document.nodes.values() if node.load_index is not None},
                'materials': {i: i for i in range(len(document.materials))},
            }
            extension_preserver.restore(gltf, extensions, index_maps, self.config)

        self.log(f"Serialized {len(nodes)} nodes, {len(skins)} skins, "
                 f"{len(gltf.get('animations', []))} animations")
        return gltf, work.binary

    @staticmethod
    def _serialize_node(node, node_index, skin_index) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if node.name is not None:
            data['name'] = node.name
        if node.children:
            data['children'] = [node_index[c] for c in node.children]
        if node.matrix is not None:
            data['matrix'] = list(node.matrix)
        else:
            for key in ('translation', 'rotation', 'scale'):
                value = getattr(node, key)
                if value is not None:
                    data[key] = list(value)
        if node.mesh is not None:
            data['mesh'] = node.mesh
        if node.camera is not None:
            data['camera'] = node.camera
        if node.skin is not None and skin_index.get(node.skin) is not None:
            data['skin'] = skin_index[node.skin]
        if node.weights is not None:
            data['weights'] = list(node.weights)
        if node.extras not in (None, {}):
            data['extras'] = copy.deepcopy(node.extras)
        return data

    @staticmethod
    def _serialize_scene(scene, node_index) -> Dict[str, Any]:
        data: Dict[str, Any] = {'nodes': [node_index[n] for n in scene.nodes]}
        if scene.name is not None:
            data['name'] = scene.name
        if scene.extras is not None:
            data['extras'] = copy.deepcopy(scene.extras)
        if scene.extensions:
            data['extensions'] = copy.deepcopy(scene.extensions)
        return data

    @staticmethod
    def _serialize_material(material) -> Dict[str, Any]:
        data = copy.deepcopy(material.properties)
        if material.name is not None:
            data['name'] = material.name
        if material.extras is not None:
            data['extras'] = copy.deepcopy(material.extras)
        if material.extensions:
            data['extensions'] = copy.deepcopy(material.extensions)
        return data

    def _serialize_skins(self, work: Document, node_index):
        skin_index: Dict[int, Optional[int]] = {}
        skins = []
        for i, skin in enumerate(work.skins):
            if not skin.joints:
                skin_index[i] = None
                self.log(f"Skipping skin {i} ('{skin.name}'): no joints left")
                continue

            accessor = skin.accessor
            if accessor is None:
                matrices = np.ascontiguousarray(skin.inverse_bind_matrices, dtype=np.float32)
                view = work.append_buffer_data(matrices.tobytes())
                accessor = work.add_accessor({
                    'bufferView': view,
                    'componentType': 5126,
                    'count': len(matrices),
                    'type': 'MAT4',
                })

            data: Dict[str, Any] = {
                'joints': [node_index[j] for j in skin.joints],
                'inverseBindMatrices': accessor,
            }
            if skin.name is not None:
                data['name'] = skin.name
            if skin.skeleton is not None:
                data['skeleton'] = node_index[skin.skeleton]
            if skin.extras is not None:
                data['extras'] = copy.deepcopy(skin.extras)
            if skin.extensions:
                data['extensions'] = copy.deepcopy(skin.extensions)

            skin_index[i] = len(skins)
            skins.append(data)
        return skin_index, skins

    def _serialize_animations(self, document: Document, node_index):
        animations = []
        for animation in document.animations:
            channels = []
            for channel in animation.channels:
                target: Dict[str, Any] = {'path': channel.path}
                if channel.target_node is not None:
                    if channel.target_node not in node_index:
                        continue
                    target['node'] = node_index[channel.target_node]
                if channel.target_extensions:
                    target['extensions'] = copy.deepcopy(channel.target_extensions)
                entry: Dict[str, Any] = {'sampler': channel.sampler, 'target': target}
                if channel.extras is not None:
                    entry['extras'] = copy.deepcopy(channel.extras)
                channels.append(entry)

            if not channels:
                self.log(f"Skipping animation '{animation.name}': no channels")
                continue

            samplers = []
            for sampler in animation.samplers:
                entry = {
                    'input': sampler.input,
                    'output': sampler.output,
                    'interpolation': sampler.interpolation,
                }
                if sampler.extras is not None:
                    entry['extras'] = copy.deepcopy(sampler.extras)
                samplers.append(entry)

            data: Dict[str, Any] = {'channels': channels, 'samplers': samplers}
            if animation.name is not None:
                data['name'] = animation.name
            if animation.extras is not None:
                data['extras'] = copy.deepcopy(animation.extras)
            if animation.extensions:
                data['extensions'] = copy.deepcopy(animation.extensions)
            animations.append(data)
        return animations


def default_output_name(input_path, suffix='_edited') -> Path:
    """Output path next to the input, keeping its extension"""
    path = Path(input_path)
    return path.with_name(f"{path.stem}{suffix}{path.suffix or '.glb'}")
