#!/usr/bin/env python3
"""
Config Module
Codec configuration object passed explicitly to readers, exporters and edits
"""

from dataclasses import dataclass, field
from typing import Tuple


DEFAULT_VENDOR_PREFIXES = (
    'mixamorig:',
    'mixamorig_',
    'mixamorig',
    'armature_',
    'skeleton_',
)


@dataclass(frozen=True)
class CodecConfig:
    """Settings shared by every decode/encode and edit call

    Attributes:
        vendor_prefixes: Bone name prefixes stripped (case-insensitive) before matching
        fuzzy_threshold: Minimum similarity (exclusive) for a fuzzy bone match
        always_required_prefixes: Extension name prefixes that are also written
            to extensionsRequired on export (e.g. ("VRM", "VRMC_"))
        skip_unknown_chunks: Skip unknown GLB chunk types instead of rejecting them
        history_depth: Maximum number of undo snapshots kept
        copy_suffix: Suffix appended to names of copied nodes
        preserve_world_on_move: Default for world-transform preservation on move
        generator: asset.generator written when the source declares none
    """
    vendor_prefixes: Tuple[str, ...] = DEFAULT_VENDOR_PREFIXES
    fuzzy_threshold: float = 0.6
    always_required_prefixes: Tuple[str, ...] = field(default_factory=tuple)
    skip_unknown_chunks: bool = True
    history_depth: int = 50
    copy_suffix: str = '_copy'
    preserve_world_on_move: bool = False
    generator: str = 'glbsync'

    def __post_init__(self):
        if not 0.0 <= self.fuzzy_threshold <= 1.0:
            raise ValueError(f"fuzzy_threshold must be within [0, 1], got {self.fuzzy_threshold}")
        if self.history_depth < 1:
            raise ValueError(f"history_depth must be at least 1, got {self.history_depth}")


DEFAULT_CONFIG = CodecConfig()
