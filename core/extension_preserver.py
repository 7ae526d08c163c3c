#!/usr/bin/env python3
"""
Extension Preserver Module
Keeps vendor extension payloads alive across an edit/export round trip.

At load every root/node/material object that carries 'extensions' or
'extras' is copied by value into a side table keyed by its index at load.
At export those copies are merged back into the freshly serialized JSON,
following the exporter's load-index to export-index maps. The table is
never touched by edits, so payloads the engine cannot interpret survive
unchanged on every object that still exists.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import CodecConfig, DEFAULT_CONFIG

logger = logging.getLogger(__name__)

# Pools whose objects keep their inline 'extensions' in the document itself
OPAQUE_POOLS = ('meshes', 'textures', 'images', 'samplers', 'cameras')


@dataclass
class ExtensionSnapshot:
    """Extensions and extras of one object at load time"""
    declared_extensions: Dict[str, Any] = field(default_factory=dict)
    extras: Any = None
    has_extras: bool = False

    @classmethod
    def capture(cls, obj) -> Optional['ExtensionSnapshot']:
        """Deep-copy the extensions/extras of a raw JSON object, None if it has neither"""
        if not isinstance(obj, dict) or ('extensions' not in obj and 'extras' not in obj):
            return None
        snapshot = cls(declared_extensions=copy.deepcopy(obj.get('extensions') or {}))
        if 'extras' in obj:
            snapshot.extras = copy.deepcopy(obj['extras'])
            snapshot.has_extras = True
        return snapshot


@dataclass
class ExtensionTable:
    root: Optional[ExtensionSnapshot] = None
    nodes: Dict[int, ExtensionSnapshot] = field(default_factory=dict)
    materials: Dict[int, ExtensionSnapshot] = field(default_factory=dict)

    def __len__(self):
        return (1 if self.root is not None else 0) + len(self.nodes) + len(self.materials)


def snapshot(document, raw_json: Dict[str, Any]) -> ExtensionTable:
    """Capture extension payloads from the source JSON

    Args:
        document: Document built from raw_json
        raw_json: Parsed JSON chunk as loaded

    Returns:
        ExtensionTable: Snapshots keyed by index at load
    """
    table = ExtensionTable(root=ExtensionSnapshot.capture(raw_json))

    for i, node in enumerate(raw_json.get('nodes', [])):
        entry = ExtensionSnapshot.capture(node)
        if entry is not None:
            table.nodes[i] = entry

    for i, material in enumerate(raw_json.get('materials', [])):
        entry = ExtensionSnapshot.capture(material)
        if entry is not None:
            table.materials[i] = entry

    logger.info("Captured %d extension snapshots (%d nodes, %d materials)",
                len(table), len(table.nodes), len(table.materials))
    return table


def _merge_entry(target: Dict[str, Any], entry: ExtensionSnapshot) -> List[str]:
    """Merge one snapshot into a serialized object, returning its extension names"""
    if entry.declared_extensions:
        merged = target.get('extensions')
        if not isinstance(merged, dict):
            merged = {}
        for name, payload in entry.declared_extensions.items():
            merged[name] = copy.deepcopy(payload)
        target['extensions'] = merged

    if entry.has_extras:
        current = target.get('extras')
        if isinstance(current, dict) and isinstance(entry.extras, dict):
            current.update(copy.deepcopy(entry.extras))
        else:
            target['extras'] = copy.deepcopy(entry.extras)

    return list(entry.declared_extensions)


def _append_missing(names: List[str], values) -> None:
    for value in values:
        if value not in names:
            names.append(value)


def restore(serialized: Dict[str, Any], table: ExtensionTable,
            index_maps: Dict[str, Dict[int, int]],
            config: CodecConfig = DEFAULT_CONFIG) -> Dict[str, Any]:
    """Re-inject snapshots into serialized JSON

    Args:
        serialized: JSON dict produced by the exporter (modified in place)
        table: Snapshots captured at load
        index_maps: {'nodes': {load_index: export_index}, 'materials': {...}}
        config: Codec configuration (always-required prefixes)

    Returns:
        dict: The same serialized dict
    """
    restored_names: List[str] = []
    restored = 0
    dropped = 0

    if table.root is not None:
        restored_names.extend(_merge_entry(serialized, table.root))
        restored += 1

    for pool, entries in (('nodes', table.nodes), ('materials', table.materials)):
        mapping = index_maps.get(pool, {})
        objects = serialized.get(pool, [])
        for load_index, entry in entries.items():
            export_index = mapping.get(load_index)
            if export_index is None or export_index >= len(objects):
                dropped += 1
                continue
            try:
                restored_names.extend(_merge_entry(objects[export_index], entry))
                restored += 1
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("Could not restore extensions of %s[%d]: %s", pool, load_index, e)

    used = serialized.get('extensionsUsed', [])
    _append_missing(used, restored_names)
    if used:
        serialized['extensionsUsed'] = used

    required = serialized.get('extensionsRequired', [])
    always = tuple(config.always_required_prefixes)
    if always:
        _append_missing(required, [name for name in used if name.startswith(always)])
    if required:
        serialized['extensionsRequired'] = required

    logger.info("Restored %d extension snapshots, dropped %d for deleted objects", restored, dropped)
    return serialized


def active_extensions(document, table: Optional[ExtensionTable]) -> List[str]:
    """Names of extensions attached to objects that still exist

    Args:
        document: Live document
        table: Snapshot table captured at load, or None

    Returns:
        list: Extension names in first-seen order
    """
    names: List[str] = []

    if table is not None:
        if table.root is not None:
            _append_missing(names, table.root.declared_extensions)
        for node in document.nodes.values():
            entry = table.nodes.get(node.load_index) if node.load_index is not None else None
            if entry is not None:
                _append_missing(names, entry.declared_extensions)
        for load_index, entry in table.materials.items():
            if load_index < len(document.materials):
                _append_missing(names, entry.declared_extensions)

    for pool in OPAQUE_POOLS:
        for obj in getattr(document, pool):
            _append_missing(names, obj.get('extensions') or {})
    for group in (document.materials, document.scenes, document.skins, document.animations):
        for obj in group:
            _append_missing(names, obj.extensions or {})

    return names
