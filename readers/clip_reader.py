#!/usr/bin/env python3
"""
Animation Clip Reader Module
Extracts the animations of a GLB/VRMA file as generic AnimationClips
"""

from typing import Any, Dict, List, Optional

import numpy as np

from core.clip_data import AnimationClip, Track, TrackProperty
from core.errors import ReferenceIntegrityError

from .base_reader import BaseReader
from .gltf_reader import read_accessor

VRMA_EXTENSION = 'VRMC_vrm_animation'

# glTF target path -> (track suffix, declared property)
PATH_SUFFIXES = {
    'translation': ('position', TrackProperty.TRANSLATION),
    'rotation': ('quaternion', TrackProperty.ROTATION),
    'scale': ('scale', TrackProperty.SCALE),
}


def humanoid_bone_names(gltf: Dict[str, Any]) -> Dict[int, str]:
    """Node index -> humanoid bone name from a VRMC_vrm_animation extension"""
    extension = (gltf.get('extensions') or {}).get(VRMA_EXTENSION) or {}
    human_bones = (extension.get('humanoid') or {}).get('humanBones') or {}
    names = {}
    for bone_name, entry in human_bones.items():
        node = entry.get('node') if isinstance(entry, dict) else None
        if isinstance(node, int):
            names[node] = bone_name
    return names


class AnimationClipReader(BaseReader):
    """Reads animation clips from GLB-family files

    Tracks are named "<bone>.<position|quaternion|scale>". The bone is the
    humanoid bone name when the file carries a VRMA humanoid map, otherwise
    the target node's name.
    """

    def get_format_name(self) -> str:
        return "glTF Animation"

    def read_bytes(self, data: bytes) -> List[AnimationClip]:
        container = self.decode(data)
        return self.read_json(container.parse_json(), container.binary_chunk)

    def read_json(self, gltf: Dict[str, Any], binary: Optional[bytes]) -> List[AnimationClip]:
        """Convert every animation of a parsed glTF into a clip

        Args:
            gltf: Parsed glTF JSON
            binary: GLB binary chunk or None

        Returns:
            list: One AnimationClip per animation with at least one track
        """
        humanoid = humanoid_bone_names(gltf)
        if humanoid:
            self.log(f"Using VRMA humanoid map ({len(humanoid)} bones)")

        nodes = gltf.get('nodes', [])
        clips = []
        for a, animation in enumerate(gltf.get('animations', [])):
            name = animation.get('name') or f"Animation {a}"
            samplers = animation.get('samplers', [])
            tracks = []

            for c, channel in enumerate(animation.get('channels', [])):
                target = channel.get('target', {})
                path = target.get('path')
                node_index = target.get('node')
                if path not in PATH_SUFFIXES:
                    continue
                if not isinstance(node_index, int) or not 0 <= node_index < len(nodes):
                    self.log(f"Skipping channel {c} of '{name}': missing target node")
                    continue

                bone = humanoid.get(node_index) or nodes[node_index].get('name') or f"node{node_index}"
                suffix, declared = PATH_SUFFIXES[path]
                try:
                    sampler = samplers[channel['sampler']]
                    times = read_accessor(gltf, binary, sampler['input']).reshape(-1)
                    values = read_accessor(gltf, binary, sampler['output'])
                    interpolation = sampler.get('interpolation', 'LINEAR')
                    if interpolation == 'CUBICSPLINE':
                        # Keep the value of each (in-tangent, value, out-tangent) triple
                        values = values.reshape(len(times), 3, -1)[:, 1]
                except (ReferenceIntegrityError, KeyError, IndexError, TypeError, ValueError) as e:
                    self.log(f"Skipping channel {c} of '{name}': {e}")
                    continue

                if interpolation == 'STEP':
                    self.log(f"Channel {c} of '{name}' uses STEP interpolation; imported as LINEAR")

                tracks.append(Track(
                    target_name=f"{bone}.{suffix}",
                    times=times.astype(np.float32),
                    values=values.astype(np.float32).reshape(-1),
                    declared_property=declared,
                ))

            if tracks:
                clips.append(AnimationClip(name=name, tracks=tracks))
            else:
                self.log(f"Animation '{name}' has no transform tracks")

        self.log(f"Read {len(clips)} animation clips")
        return clips
