#!/usr/bin/env python3
"""
Document Manager - Main Orchestrator Module
Owns one loaded document together with its render tree, node mapper,
extension snapshots and undo history, and exposes the operations UIs use.

Every structural edit goes through the StructuralMutator; every successful
edit pushes the pre-edit snapshot onto the history.
"""

import asyncio
import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.animation_ingester import AnimationIngester, IngestReport
from core.bone_retargeter import BoneRetargeter
from core.clip_data import AnimationClip
from core.config import CodecConfig, DEFAULT_CONFIG
from core.document import Document
from core.errors import EmptyAnimationError, NotFoundError
from core.extension_preserver import ExtensionTable, active_extensions
from core.history import HistoryManager
from core.mutator import StructuralMutator
from core.node_mapper import NodeMapper, build_render_tree
from core.render_tree import RenderTree, SceneGraph
from exporters.glb_exporter import GlbExporter
from readers import (
    AnimationClipReader,
    FileType,
    GltfReader,
    detect_file_type,
    extract_vrm_metadata,
)

logger = logging.getLogger(__name__)


class DocumentManager:
    """Facade over a single loaded GLB/VRM document

    Coordinates:
    1. Loading (container decode, document build, extension snapshot,
       render tree construction)
    2. Structural edits with undo/redo
    3. Animation import with bone retargeting
    4. Export with extension restoration
    """

    def __init__(self, config: CodecConfig = DEFAULT_CONFIG, render_tree: Optional[RenderTree] = None,
                 progress_callback=None):
        """Initialize manager

        Args:
            config: Codec configuration passed to every reader, edit and export
            render_tree: Render tree collaborator (in-memory SceneGraph if None)
            progress_callback: Optional function to call for progress updates
                              Signature: callback(message: str) -> None
        """
        self.config = config
        self.progress_callback = progress_callback
        self.render_tree = render_tree if render_tree is not None else SceneGraph()
        self.mapper = NodeMapper()
        self.history = HistoryManager(config.history_depth)
        self.retargeter = BoneRetargeter(config)
        self.ingester = AnimationIngester()

        self.document: Optional[Document] = None
        self.extensions: Optional[ExtensionTable] = None
        self.raw_json: Optional[Dict[str, Any]] = None
        self.file_type = FileType.UNKNOWN
        self.source_name: Optional[str] = None
        self._mutator: Optional[StructuralMutator] = None

    def log(self, message):
        """Send progress updates to callback"""
        if self.progress_callback:
            self.progress_callback(message)
        logger.info(message)

    @property
    def is_loaded(self) -> bool:
        return self.document is not None

    def _require_document(self) -> Document:
        if self.document is None:
            raise RuntimeError("No document loaded")
        return self.document

    @property
    def mutator(self) -> StructuralMutator:
        self._require_document()
        return self._mutator

    # ------------------------------------------------------------------
    # Load / export
    # ------------------------------------------------------------------

    def load_from_bytes(self, data: bytes, filename: Optional[str] = None) -> Dict[str, int]:
        """Load a GLB/VRM file, replacing the current document

        The previous state is kept untouched if decoding fails.

        Args:
            data: File contents
            filename: Original name, used for file type detection

        Returns:
            dict: Resource counts of the loaded document

        Raises:
            MalformedContainerError: On container corruption
            ReferenceIntegrityError: On dangling references in the JSON
        """
        self.log(f"Loading {filename or 'document'} ({len(data)} bytes)")
        asset = GltfReader(self.config, self.progress_callback).read_bytes(data)
        self.open_document(asset.document, asset.extensions, asset.raw_json,
                           detect_file_type(data, filename))
        self.source_name = filename

        counts = self.document.resource_counts()
        self.log(f"Loaded {self.file_type.value}: {counts['nodes']} nodes, "
                 f"{counts['meshes']} meshes, {counts['animations']} animations")
        return counts

    def open_document(self, document: Document, extensions: Optional[ExtensionTable] = None,
                      raw_json: Optional[Dict[str, Any]] = None, file_type=FileType.GLB):
        """Take ownership of a document and build its render tree

        Raises:
            ValueError: If another manager already owns the document
        """
        document.claim(self)
        if self.document is not None and self.document is not document:
            self.document.owner = None
        self.document = document
        self.extensions = extensions
        self.raw_json = raw_json
        self.file_type = file_type

        build_render_tree(self.document, self.render_tree, self.mapper)
        self._mutator = StructuralMutator(self.document, self.render_tree, self.mapper, self.config)
        self.history.clear()

    def export_to_bytes(self) -> bytes:
        """Serialize the current document with its preserved extensions"""
        document = self._require_document()
        exporter = GlbExporter(self.config, self.progress_callback)
        return exporter.export_bytes(document, self.extensions)

    async def load_from_file(self, file_path) -> Dict[str, int]:
        path = Path(file_path)
        data = await asyncio.to_thread(path.read_bytes)
        return self.load_from_bytes(data, path.name)

    async def export_to_file(self, file_path) -> Dict[str, Any]:
        """Export to disk

        Returns:
            dict: Exporter result ('success', 'files', 'message')
        """
        document = self._require_document()
        exporter = GlbExporter(self.config, self.progress_callback)
        result = await asyncio.to_thread(exporter.export, document, file_path, self.extensions)
        self.log(exporter.get_export_summary(result))
        return result

    # ------------------------------------------------------------------
    # Structural edits
    # ------------------------------------------------------------------

    def _record(self, operation, *args, **kwargs):
        before = self._require_document().snapshot()
        result = operation(*args, **kwargs)
        self.history.push(before)
        return result

    def move_node(self, node_id, new_parent_id=None, preserve_world=None):
        """Reparent a node (None targets the active scene root)"""
        self._record(self.mutator.move, node_id, new_parent_id, preserve_world)

    def copy_node(self, node_id, target_parent_id=None) -> int:
        """Deep-copy a subtree, returning the new root id"""
        return self._record(self.mutator.copy, node_id, target_parent_id)

    def delete_node(self, node_id) -> int:
        """Delete a subtree, returning the number of removed nodes"""
        return self._record(self.mutator.delete, node_id)

    def update_node_transform(self, node_id, translation=None, rotation=None, scale=None):
        self._record(self.mutator.update_transform, node_id, translation, rotation, scale)

    def paste_node(self, source: 'DocumentManager', node_id, target_id=None, mode='add') -> int:
        """Paste a subtree of another loaded document into this one

        Args:
            source: Manager holding the source document
            node_id: Subtree root in the source document
            target_id: Parent of the pasted root ('add'), or the node it
                replaces ('replace')
            mode: 'add' or 'replace'

        Returns:
            int: Id of the pasted root
        """
        new_root = self._record(self.mutator.paste, source._require_document(), node_id,
                                target_id, mode, source.extensions)
        self.log(f"Pasted '{self.document.nodes[new_root].name}' ({mode})")
        return new_root

    def protect_node(self, node_id, protected=True):
        """Flag a node so delete and move reject it"""
        self.mutator.set_protected(node_id, protected)

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------

    def _apply_snapshot(self, snapshot):
        # Protection flags belong to the session, not to the edit history
        protected = set(self.mutator.protected_nodes())
        self.document.restore(snapshot)
        for node in self.document.nodes.values():
            node.protected = node.id in protected
        build_render_tree(self.document, self.render_tree, self.mapper)

    def undo(self) -> bool:
        """Restore the state before the last edit; False if there is none"""
        document = self._require_document()
        previous = self.history.undo(document.snapshot())
        if previous is None:
            return False
        self._apply_snapshot(previous)
        self.log("Undo")
        return True

    def redo(self) -> bool:
        document = self._require_document()
        following = self.history.redo(document.snapshot())
        if following is None:
            return False
        self._apply_snapshot(following)
        self.log("Redo")
        return True

    # ------------------------------------------------------------------
    # Animation import
    # ------------------------------------------------------------------

    def skeleton_joint_names(self) -> List[str]:
        """Joint names used for retargeting (all node names when there are no skins)"""
        document = self._require_document()
        joint_ids = document.joint_node_ids() or list(document.nodes)
        names = []
        for node_id in joint_ids:
            name = document.nodes[node_id].name
            if name and name not in names:
                names.append(name)
        return names

    def ingest_animation(self, clip: AnimationClip, retarget=True) -> IngestReport:
        """Import a clip into the document

        Args:
            clip: Source clip
            retarget: Rename tracks onto the model's joints first

        Returns:
            IngestReport: Outcome; nothing is committed when it reports failure
        """
        document = self._require_document()
        retarget_result = None
        source = clip
        if retarget:
            retarget_result = self.retargeter.retarget(clip, self.skeleton_joint_names())
            source = AnimationClip(name=clip.name, duration=clip.duration, tracks=retarget_result.tracks)

        before = document.snapshot()
        try:
            report = self.ingester.ingest_clip(document, source)
        except EmptyAnimationError as e:
            self.log(f"Animation '{clip.name}' not imported: {e}")
            report = IngestReport(skipped=e.skipped)
        else:
            self.history.push(before)
            self.log(f"Imported animation '{clip.name}' with {report.channels} channels")

        if retarget_result is not None:
            report.retarget = retarget_result
            report.skipped.extend((w.track_name, str(w)) for w in retarget_result.diagnostics)
        return report

    def ingest_animation_bytes(self, data: bytes, retarget=True) -> List[IngestReport]:
        """Import every animation of a GLB/VRMA file"""
        clips = AnimationClipReader(self.config, self.progress_callback).read_bytes(data)
        return [self.ingest_animation(clip, retarget) for clip in clips]

    def paste_animation(self, source: 'DocumentManager', animation_index, retarget=True) -> IngestReport:
        """Import one animation of another loaded document

        Raises:
            NotFoundError: If the source has no animation at that index
        """
        document = source._require_document()
        if not 0 <= animation_index < len(document.animations):
            raise NotFoundError(f"Source has no animation {animation_index}")
        animation = document.animations[animation_index]

        single = copy.copy(document)
        single.animations = [animation]
        gltf, binary = GlbExporter(self.config).serialize(single, source.extensions)
        clips = AnimationClipReader(self.config, self.progress_callback).read_json(gltf, binary)
        if not clips:
            name = animation.name or f"Animation {animation_index}"
            self.log(f"Animation '{name}' not imported: no transform tracks")
            return IngestReport(skipped=[(name, "no transform tracks")])
        return self.ingest_animation(clips[0], retarget)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_extensions(self) -> List[str]:
        return active_extensions(self._require_document(), self.extensions)

    def resolve_node(self, reference) -> int:
        """Node id from an int, '#<id>' or an exact node name

        Raises:
            NotFoundError: If nothing matches
        """
        document = self._require_document()
        if isinstance(reference, int):
            document.get_node(reference)
            return reference
        text = str(reference)
        if text.startswith('#') and text[1:].isdigit():
            node_id = int(text[1:])
            document.get_node(node_id)
            return node_id
        node = document.find_node_by_name(text)
        if node is None:
            raise NotFoundError(f"No node named '{text}'")
        return node.id

    def search_nodes(self, query, exact=False) -> List[Dict[str, Any]]:
        document = self._require_document()
        return [
            {'id': node.id, 'name': node.name, 'parent': document.parent_of(node.id)}
            for node in document.find_nodes_by_name(query, exact)
        ]

    def get_hierarchy(self, include_ids=True) -> List[Dict[str, Any]]:
        return self._require_document().describe_hierarchy(include_ids)

    def get_resource_info(self) -> Dict[str, Any]:
        document = self._require_document()
        info: Dict[str, Any] = dict(document.resource_counts())
        info['file_type'] = self.file_type.value
        info['generator'] = document.asset.get('generator')
        info['version'] = document.asset.get('version')
        info['extensions_used'] = list(document.extensions_used)
        info['can_undo'] = self.history.can_undo()
        info['can_redo'] = self.history.can_redo()
        return info

    @property
    def vrm_metadata(self) -> Optional[Dict[str, Any]]:
        if self.raw_json is None:
            return None
        return extract_vrm_metadata(self.raw_json)
