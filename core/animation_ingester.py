#!/usr/bin/env python3
"""
Animation Ingester Module
Converts generic keyframe tracks into document-native animation channels,
samplers and accessors.

Tracks are validated and staged first; buffers, accessors and the new
animation are only written once at least one channel is known to be valid,
so a failed ingestion leaves the document untouched.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

import numpy as np

from .clip_data import AnimationClip, Track
from .document import Animation, AnimationChannel, AnimationSampler, Document
from .errors import EmptyAnimationError

logger = logging.getLogger(__name__)

FLOAT_COMPONENT_TYPE = 5126
ACCESSOR_TYPES = {1: 'SCALAR', 3: 'VEC3', 4: 'VEC4'}


@dataclass
class StagedChannel:
    node_id: int
    path: str
    times: np.ndarray
    values: np.ndarray
    components: int


@dataclass
class IngestReport:
    """Outcome of one ingestion

    Attributes:
        animation_index: Index of the new animation, None on failure
        channels: Number of channels written
        skipped: (track name, reason) for every rejected track
        retarget: Retarget result the clip went through, if any
    """
    animation_index: Optional[int] = None
    channels: int = 0
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    retarget: Any = None

    @property
    def success(self) -> bool:
        return self.animation_index is not None


def resolve_path(track: Track) -> Optional[str]:
    """glTF target path from declared kind and value arity

    A declared kind wins when its component count matches the arity.
    Undeclared tracks fall back to the arity: 4 components -> rotation,
    3 -> translation; anything else is not ingestible.
    """
    arity = track.arity
    declared = track.declared_property
    if declared is not None:
        return declared.value if arity == declared.component_count else None
    if arity == 4:
        return 'rotation'
    if arity == 3:
        return 'translation'
    return None


class AnimationIngester:
    """Writes animation clips into a document"""

    def stage(self, document: Document, clip: AnimationClip, report: IngestReport) -> List[StagedChannel]:
        staged = []
        seen_targets = set()

        for track in clip.tracks:
            reason = track.problem()
            node = None
            path = None
            if reason is None:
                node = document.find_node_by_name(track.node_name)
                if node is None:
                    reason = f"no node named '{track.node_name}'"
            if reason is None:
                path = resolve_path(track)
                if path is None:
                    reason = f"unsupported value arity {track.arity}"
            if reason is None and (node.id, path) in seen_targets:
                reason = f"duplicate target {track.node_name}.{path}"

            if reason is not None:
                logger.warning("Skipping track '%s': %s", track.target_name, reason)
                report.skipped.append((track.target_name, reason))
                continue

            seen_targets.add((node.id, path))
            staged.append(StagedChannel(
                node_id=node.id,
                path=path,
                times=track.times,
                values=track.values,
                components=track.arity,
            ))
        return staged

    @staticmethod
    def _write_accessor(document: Document, data: np.ndarray, components: int, with_bounds=False) -> int:
        data = np.ascontiguousarray(data, dtype=np.float32)
        view = document.append_buffer_data(data.tobytes())
        accessor = {
            'bufferView': view,
            'componentType': FLOAT_COMPONENT_TYPE,
            'count': len(data) // components,
            'type': ACCESSOR_TYPES[components],
        }
        if with_bounds:
            accessor['min'] = [float(data.min())]
            accessor['max'] = [float(data.max())]
        return document.add_accessor(accessor)

    def ingest_clip(self, document: Document, clip: AnimationClip) -> IngestReport:
        """Ingest a clip, raising when nothing can be written

        Args:
            document: Target document
            clip: Clip whose track names already match document node names

        Returns:
            IngestReport: Index of the new animation and skipped tracks

        Raises:
            EmptyAnimationError: If no track produced a valid channel
        """
        report = IngestReport()
        staged = self.stage(document, clip, report)
        if not staged:
            raise EmptyAnimationError(
                f"Clip '{clip.name}' produced no channels ({len(report.skipped)} tracks skipped)",
                skipped=report.skipped)

        animation = Animation(name=clip.name or f"Animation {len(document.animations)}")
        for entry in staged:
            input_accessor = self._write_accessor(document, entry.times, 1, with_bounds=True)
            output_accessor = self._write_accessor(document, entry.values, entry.components)
            animation.samplers.append(AnimationSampler(
                input=input_accessor, output=output_accessor, interpolation='LINEAR'))
            animation.channels.append(AnimationChannel(
                target_node=entry.node_id, path=entry.path, sampler=len(animation.samplers) - 1))

        document.animations.append(animation)
        report.animation_index = len(document.animations) - 1
        report.channels = len(animation.channels)
        logger.info("Ingested '%s': %d channels, %d tracks skipped",
                    animation.name, report.channels, len(report.skipped))
        return report

    def ingest(self, document: Document, clip: AnimationClip) -> bool:
        """Ingest a clip, returning False when no channel could be created"""
        try:
            self.ingest_clip(document, clip)
        except EmptyAnimationError as e:
            logger.warning("%s", e)
            return False
        return True
