#!/usr/bin/env python3
"""
Clip Data Module
Format-agnostic animation clip structures.

Clip readers decode source animations into these structures and the
retargeter/ingester consume them without knowledge of the source format.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional

import numpy as np


class TrackProperty(Enum):
    """Animated node property"""
    TRANSLATION = "translation"
    ROTATION = "rotation"
    SCALE = "scale"

    @property
    def component_count(self) -> int:
        return 4 if self is TrackProperty.ROTATION else 3


# Track name suffixes accepted for each property
PROPERTY_SUFFIXES = {
    'position': TrackProperty.TRANSLATION,
    'translation': TrackProperty.TRANSLATION,
    'quaternion': TrackProperty.ROTATION,
    'rotation': TrackProperty.ROTATION,
    'scale': TrackProperty.SCALE,
}


@dataclass
class Track:
    """Keyframes of one animated property

    Attributes:
        target_name: "<node>.<property>" (e.g. "Hips.position")
        times: Key times in seconds (float32)
        values: Flattened key values (float32), len(times) * arity entries
        declared_property: Property kind given by the source, parsed from the
            target suffix when None
    """
    target_name: str
    times: np.ndarray
    values: np.ndarray
    declared_property: Optional[TrackProperty] = None

    def __post_init__(self):
        self.times = np.asarray(self.times, dtype=np.float32).reshape(-1)
        self.values = np.asarray(self.values, dtype=np.float32).reshape(-1)
        if self.declared_property is None:
            self.declared_property = PROPERTY_SUFFIXES.get(self.property_suffix.lower())

    @property
    def node_name(self) -> str:
        """Target prefix before the last '.'"""
        if '.' not in self.target_name:
            return self.target_name
        return self.target_name.rsplit('.', 1)[0]

    @property
    def property_suffix(self) -> str:
        if '.' not in self.target_name:
            return ''
        return self.target_name.rsplit('.', 1)[1]

    @property
    def arity(self) -> int:
        """Components per key, 0 when the value count is not a whole multiple"""
        if len(self.times) == 0 or len(self.values) % len(self.times):
            return 0
        return len(self.values) // len(self.times)

    def renamed(self, node_name) -> 'Track':
        """Copy of this track targeting another node, same property suffix"""
        suffix = self.property_suffix
        target = f"{node_name}.{suffix}" if suffix else node_name
        return replace(self, target_name=target)

    def problem(self) -> Optional[str]:
        """Why this track cannot be ingested, or None"""
        if len(self.times) == 0:
            return "no keyframes"
        if self.arity == 0:
            return f"{len(self.values)} values do not divide into {len(self.times)} keys"
        declared = self.declared_property
        if declared is not None and self.arity != declared.component_count:
            return f"{declared.value} needs {declared.component_count} values per key, got {self.arity}"
        if np.any(np.diff(self.times) < 0):
            return "key times decrease"
        if not np.all(np.isfinite(self.values)) or not np.all(np.isfinite(self.times)):
            return "non-finite keyframe data"
        return None


@dataclass
class AnimationClip:
    """Named collection of tracks

    Attributes:
        name: Clip name
        duration: Length in seconds; computed from the last key when negative
        tracks: Keyframe tracks
    """
    name: str
    duration: float = -1.0
    tracks: List[Track] = field(default_factory=list)

    def __post_init__(self):
        if self.duration < 0:
            ends = [float(t.times[-1]) for t in self.tracks if len(t.times)]
            self.duration = max(ends) if ends else 0.0

    def bone_names(self) -> List[str]:
        names = []
        for track in self.tracks:
            if track.node_name not in names:
                names.append(track.node_name)
        return names
