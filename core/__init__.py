#!/usr/bin/env python3
"""
Core Module
Document model, structural edits, retargeting and animation ingestion.
"""

from .animation_ingester import AnimationIngester, IngestReport
from .bone_retargeter import BONE_NAME_MAPPING, BoneMatch, BoneRetargeter, MatchTier, RetargetResult
from .clip_data import AnimationClip, Track, TrackProperty
from .config import CodecConfig, DEFAULT_CONFIG
from .document import (
    Animation,
    AnimationChannel,
    AnimationSampler,
    Document,
    DocumentSnapshot,
    Material,
    Node,
    Scene,
    Skin,
)
from .errors import (
    CycleError,
    EmptyAnimationError,
    MalformedContainerError,
    NotFoundError,
    ProtectedNodeError,
    ReferenceIntegrityError,
    SceneSyncError,
    UnresolvedBoneWarning,
)
from .extension_preserver import ExtensionSnapshot, ExtensionTable
from .history import HistoryManager
from .mutator import StructuralMutator
from .node_mapper import NodeMapper, build_render_tree
from .render_tree import RenderTree, SceneGraph
from .resource_importer import ResourceImporter

__all__ = [
    'AnimationIngester',
    'IngestReport',
    'BONE_NAME_MAPPING',
    'BoneMatch',
    'BoneRetargeter',
    'MatchTier',
    'RetargetResult',
    'AnimationClip',
    'Track',
    'TrackProperty',
    'CodecConfig',
    'DEFAULT_CONFIG',
    'Animation',
    'AnimationChannel',
    'AnimationSampler',
    'Document',
    'DocumentSnapshot',
    'Material',
    'Node',
    'Scene',
    'Skin',
    'CycleError',
    'EmptyAnimationError',
    'MalformedContainerError',
    'NotFoundError',
    'ProtectedNodeError',
    'ReferenceIntegrityError',
    'SceneSyncError',
    'UnresolvedBoneWarning',
    'ExtensionSnapshot',
    'ExtensionTable',
    'HistoryManager',
    'StructuralMutator',
    'NodeMapper',
    'build_render_tree',
    'RenderTree',
    'SceneGraph',
    'ResourceImporter',
]
