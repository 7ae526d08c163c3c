#!/usr/bin/env python3
"""
Resource Importer Module
Copies the resources used by nodes of one document (meshes, materials,
textures, images, samplers, cameras, accessors and their bytes) into
another document, remapping every index on the way.

Each source entry is copied at most once per importer, so a mesh or
material shared by several pasted nodes stays shared in the target.
"""

import copy
import logging
from functools import partial
from typing import Any, Dict, List

from .document import Document, Material
from .errors import ReferenceIntegrityError

logger = logging.getLogger(__name__)


class ResourceImporter:
    """Copies pool entries from a source document into a target document

    Args:
        source: Document the resources come from
        target: Document receiving the copies
        source_extensions: Extension table captured when the source was
            loaded; supplies the extensions of its loaded materials
    """

    def __init__(self, source: Document, target: Document, source_extensions=None):
        self.source = source
        self.target = target
        self.source_extensions = source_extensions
        self.maps: Dict[str, Dict[int, int]] = {
            pool: {} for pool in ('buffer_views', 'accessors', 'samplers', 'images',
                                  'textures', 'materials', 'meshes', 'cameras')
        }
        self.extension_names: List[str] = []

    def _lookup(self, pool, index, copier) -> int:
        mapping = self.maps[pool]
        if index not in mapping:
            entries = getattr(self.source, pool)
            if not isinstance(index, int) or not 0 <= index < len(entries):
                raise ReferenceIntegrityError(
                    f"Source {pool} index {index} is out of range ({len(entries)})")
            mapping[index] = copier(index)
        return mapping[index]

    def note_extensions(self, extensions):
        for name in extensions or {}:
            if name not in self.extension_names:
                self.extension_names.append(name)

    def _append(self, pool, entry) -> int:
        entries = getattr(self.target, pool)
        entries.append(entry)
        return len(entries) - 1

    # ------------------------------------------------------------------
    # Binary data
    # ------------------------------------------------------------------

    def buffer_view(self, index) -> int:
        return self._lookup('buffer_views', index, self._copy_buffer_view)

    def _copy_buffer_view(self, index) -> int:
        view = self.source.buffer_views[index]
        new_index = self.target.append_buffer_data(self.source.view_bytes(index))
        for key in ('byteStride', 'target', 'name', 'extras'):
            if key in view:
                self.target.buffer_views[new_index][key] = copy.deepcopy(view[key])
        return new_index

    def accessor(self, index) -> int:
        return self._lookup('accessors', index, self._copy_accessor)

    def _copy_accessor(self, index) -> int:
        accessor = copy.deepcopy(self.source.accessors[index])
        if 'bufferView' in accessor:
            accessor['bufferView'] = self.buffer_view(accessor['bufferView'])
        sparse = accessor.get('sparse')
        if sparse:
            for part in ('indices', 'values'):
                if part in sparse:
                    sparse[part]['bufferView'] = self.buffer_view(sparse[part]['bufferView'])
        return self.target.add_accessor(accessor)

    # ------------------------------------------------------------------
    # Textures
    # ------------------------------------------------------------------

    def _copy_plain(self, pool, index) -> int:
        entry = copy.deepcopy(getattr(self.source, pool)[index])
        self.note_extensions(entry.get('extensions'))
        return self._append(pool, entry)

    def sampler(self, index) -> int:
        return self._lookup('samplers', index, partial(self._copy_plain, 'samplers'))

    def image(self, index) -> int:
        return self._lookup('images', index, self._copy_image)

    def _copy_image(self, index) -> int:
        image = copy.deepcopy(self.source.images[index])
        if 'bufferView' in image:
            image['bufferView'] = self.buffer_view(image['bufferView'])
        elif 'uri' in image and not image['uri'].startswith('data:'):
            logger.warning("Image %d references external file '%s'; it must be shipped alongside",
                           index, image['uri'])
        self.note_extensions(image.get('extensions'))
        return self._append('images', image)

    def texture(self, index) -> int:
        return self._lookup('textures', index, self._copy_texture)

    def _copy_texture(self, index) -> int:
        texture = copy.deepcopy(self.source.textures[index])
        if 'sampler' in texture:
            texture['sampler'] = self.sampler(texture['sampler'])
        if 'source' in texture:
            texture['source'] = self.image(texture['source'])
        # KHR_texture_basisu, EXT_texture_webp and friends name an alternate image
        for payload in (texture.get('extensions') or {}).values():
            if isinstance(payload, dict) and isinstance(payload.get('source'), int):
                payload['source'] = self.image(payload['source'])
        self.note_extensions(texture.get('extensions'))
        return self._append('textures', texture)

    def remap_texture_refs(self, value: Any, key=None) -> Any:
        """Rewrite {'index': n} texture references held under '*Texture' keys

        Args:
            value: Material properties or extension payload (modified in place)
            key: Key the value is stored under

        Returns:
            The same value
        """
        if isinstance(value, dict):
            if key is not None and key.endswith('Texture') and isinstance(value.get('index'), int):
                value['index'] = self.texture(value['index'])
            for child_key, child in value.items():
                self.remap_texture_refs(child, child_key)
        elif isinstance(value, list):
            for item in value:
                self.remap_texture_refs(item, key)
        return value

    # ------------------------------------------------------------------
    # Materials, meshes, cameras
    # ------------------------------------------------------------------

    def material(self, index) -> int:
        return self._lookup('materials', index, self._copy_material)

    def _copy_material(self, index) -> int:
        source = self.source.materials[index]
        extensions = source.extensions
        if extensions is None and self.source_extensions is not None:
            entry = self.source_extensions.materials.get(index)
            if entry is not None and entry.declared_extensions:
                extensions = entry.declared_extensions

        material = Material(
            name=source.name,
            properties=self.remap_texture_refs(copy.deepcopy(source.properties)),
            extras=copy.deepcopy(source.extras),
            extensions=self.remap_texture_refs(copy.deepcopy(extensions)) if extensions else None,
        )
        self.note_extensions(material.extensions)
        return self._append('materials', material)

    def mesh(self, index) -> int:
        return self._lookup('meshes', index, self._copy_mesh)

    def _copy_mesh(self, index) -> int:
        mesh = copy.deepcopy(self.source.meshes[index])
        for primitive in mesh.get('primitives', []):
            attributes = primitive.get('attributes', {})
            for name, accessor in attributes.items():
                attributes[name] = self.accessor(accessor)
            if 'indices' in primitive:
                primitive['indices'] = self.accessor(primitive['indices'])
            if 'material' in primitive:
                primitive['material'] = self.material(primitive['material'])
            for morph in primitive.get('targets', []):
                for name, accessor in morph.items():
                    morph[name] = self.accessor(accessor)
            draco = (primitive.get('extensions') or {}).get('KHR_draco_mesh_compression')
            if isinstance(draco, dict) and 'bufferView' in draco:
                draco['bufferView'] = self.buffer_view(draco['bufferView'])
            self.note_extensions(primitive.get('extensions'))
        self.note_extensions(mesh.get('extensions'))
        return self._append('meshes', mesh)

    def camera(self, index) -> int:
        return self._lookup('cameras', index, partial(self._copy_plain, 'cameras'))

    def summary(self) -> Dict[str, int]:
        """Number of copied entries per pool"""
        return {pool: len(mapping) for pool, mapping in self.maps.items()}
