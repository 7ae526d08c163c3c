#!/usr/bin/env python3
"""
Bone Retargeter Module
Maps animation track targets from a source skeleton's naming convention
onto the joint names of the loaded model.

Matching tiers, in order:
1. Exact match after normalization (vendor prefix stripped, separators
   removed, lowercased)
2. Canonical table: both names fall in the same bucket of BONE_NAME_MAPPING
3. Fuzzy match on normalized Levenshtein similarity above a threshold
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .clip_data import AnimationClip, Track
from .config import CodecConfig, DEFAULT_CONFIG
from .errors import UnresolvedBoneWarning

logger = logging.getLogger(__name__)

SEPARATORS = re.compile(r'[\s_\-]+')

# Canonical bone name -> accepted normalized variants
BONE_NAME_MAPPING: Dict[str, List[str]] = {
    # Hips / root
    'hips': ['hips', 'pelvis', 'root', 'hip'],

    # Spine
    'spine': ['spine', 'spine1', 'back'],
    'spine1': ['spine1', 'spine2', 'chest'],
    'spine2': ['spine2', 'spine3', 'upperchest'],

    # Neck / head
    'neck': ['neck', 'neck1'],
    'head': ['head', 'skull'],

    # Left arm
    'leftshoulder': ['leftshoulder', 'leftclavicle', 'lshoulder'],
    'leftarm': ['leftarm', 'leftupperarm', 'larm', 'lupperarm'],
    'leftforearm': ['leftforearm', 'leftlowerarm', 'lforearm', 'llowerarm'],
    'lefthand': ['lefthand', 'lhand'],

    # Right arm
    'rightshoulder': ['rightshoulder', 'rightclavicle', 'rshoulder'],
    'rightarm': ['rightarm', 'rightupperarm', 'rarm', 'rupperarm'],
    'rightforearm': ['rightforearm', 'rightlowerarm', 'rforearm', 'rlowerarm'],
    'righthand': ['righthand', 'rhand'],

    # Left leg
    'leftupleg': ['leftupleg', 'leftthigh', 'leftupperleg', 'lupleg', 'lthigh'],
    'leftleg': ['leftleg', 'leftshin', 'leftlowerleg', 'lleg', 'lshin'],
    'leftfoot': ['leftfoot', 'lfoot'],
    'lefttoebase': ['lefttoebase', 'lefttoe', 'lefttoes', 'ltoebase', 'ltoe'],

    # Right leg
    'rightupleg': ['rightupleg', 'rightthigh', 'rightupperleg', 'rupleg', 'rthigh'],
    'rightleg': ['rightleg', 'rightshin', 'rightlowerleg', 'rleg', 'rshin'],
    'rightfoot': ['rightfoot', 'rfoot'],
    'righttoebase': ['righttoebase', 'righttoe', 'righttoes', 'rtoebase', 'rtoe'],
}


class MatchTier(Enum):
    """Which matching stage resolved a bone"""
    EXACT = "exact"
    TABLE = "table"
    FUZZY = "fuzzy"
    UNRESOLVED = "unresolved"


@dataclass
class BoneMatch:
    """Outcome of matching one source bone name

    Attributes:
        source: Bone name as it appears in the clip
        target: Matched joint name, None when unresolved
        tier: Stage that produced the match
        score: Similarity in [0, 1] (1.0 for exact and table matches)
    """
    source: str
    target: Optional[str]
    tier: MatchTier
    score: float = 0.0

    @property
    def resolved(self) -> bool:
        return self.target is not None


@dataclass
class TrackProvenance:
    track_name: str
    renamed_to: Optional[str]
    match: BoneMatch


@dataclass
class RetargetResult:
    """Renamed tracks plus per-track provenance and diagnostics"""
    tracks: List[Track] = field(default_factory=list)
    provenance: List[TrackProvenance] = field(default_factory=list)
    diagnostics: List[UnresolvedBoneWarning] = field(default_factory=list)

    def tier_counts(self) -> Dict[str, int]:
        counts = {tier.value: 0 for tier in MatchTier}
        for record in self.provenance:
            counts[record.match.tier.value] += 1
        return counts


def levenshtein_distance(s1: str, s2: str) -> int:
    """Edit distance between two strings"""
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)
    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def similarity(a: str, b: str) -> float:
    """1 - levenshtein(a, b) / max(len(a), len(b)); two empty strings score 1"""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


class BoneRetargeter:
    """Resolves clip bone names against a skeleton's joint names"""

    def __init__(self, config: CodecConfig = DEFAULT_CONFIG):
        self.config = config
        # Longest prefix first so 'mixamorig:' wins over 'mixamorig'
        self._prefixes = sorted((p.lower() for p in config.vendor_prefixes), key=len, reverse=True)

    def normalize(self, name: str) -> str:
        """Strip one vendor prefix, drop separators and lowercase"""
        lowered = name.strip().lower()
        for prefix in self._prefixes:
            if prefix and lowered.startswith(prefix):
                lowered = lowered[len(prefix):]
                break
        return SEPARATORS.sub('', lowered)

    def match(self, name: str, joint_names: Iterable[str]) -> BoneMatch:
        """Match one bone name against the skeleton

        Args:
            name: Source bone name
            joint_names: Candidate joint names in skeleton order

        Returns:
            BoneMatch: Best match and the tier that produced it
        """
        joints = [j for j in joint_names if j]
        source = self.normalize(name)
        if not source:
            return BoneMatch(name, None, MatchTier.UNRESOLVED)

        normalized = [(joint, self.normalize(joint)) for joint in joints]

        for joint, joint_norm in normalized:
            if joint_norm == source:
                return BoneMatch(name, joint, MatchTier.EXACT, 1.0)

        for variants in BONE_NAME_MAPPING.values():
            if source not in variants:
                continue
            for joint, joint_norm in normalized:
                if joint_norm in variants:
                    return BoneMatch(name, joint, MatchTier.TABLE, 1.0)

        best_joint = None
        best_score = 0.0
        for joint, joint_norm in normalized:
            score = similarity(source, joint_norm)
            if score > best_score:
                best_joint, best_score = joint, score

        if best_joint is not None and best_score > self.config.fuzzy_threshold:
            return BoneMatch(name, best_joint, MatchTier.FUZZY, best_score)
        return BoneMatch(name, None, MatchTier.UNRESOLVED, best_score)

    def retarget_bone(self, name: str, joint_names: Iterable[str]) -> Optional[str]:
        """Matched joint name for a single bone, or None"""
        return self.match(name, joint_names).target

    def retarget(self, clip, joint_names: Iterable[str]) -> RetargetResult:
        """Rename clip tracks onto skeleton joints

        Tracks whose bone cannot be resolved are dropped and reported as
        UnresolvedBoneWarning diagnostics.

        Args:
            clip: AnimationClip or iterable of Track
            joint_names: Joint names of the target skeleton

        Returns:
            RetargetResult: Renamed tracks, provenance and diagnostics
        """
        tracks = clip.tracks if isinstance(clip, AnimationClip) else list(clip)
        joints = list(joint_names)
        result = RetargetResult()
        cache: Dict[str, BoneMatch] = {}

        for track in tracks:
            bone = track.node_name
            if bone not in cache:
                cache[bone] = self.match(bone, joints)
            match = cache[bone]

            if match.resolved:
                renamed = track.renamed(match.target)
                result.tracks.append(renamed)
                result.provenance.append(TrackProvenance(track.target_name, renamed.target_name, match))
            else:
                warning = UnresolvedBoneWarning(track.target_name, bone, match.score)
                result.provenance.append(TrackProvenance(track.target_name, None, match))
                result.diagnostics.append(warning)
                logger.warning(str(warning))

        counts = result.tier_counts()
        logger.info("Retargeted %d/%d tracks (exact %d, table %d, fuzzy %d)",
                    len(result.tracks), len(tracks),
                    counts['exact'], counts['table'], counts['fuzzy'])
        return result
