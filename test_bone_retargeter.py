#!/usr/bin/env python3
"""
Tests for bone name matching and track retargeting
"""

import logging

import pytest

from core.bone_retargeter import BoneRetargeter, MatchTier, levenshtein_distance, similarity
from core.clip_data import AnimationClip, Track
from core.config import CodecConfig
from core.errors import UnresolvedBoneWarning

SKELETON = ['Hips', 'Spine', 'Chest', 'Head', 'leftUpperLeg', 'LeftFoot', 'rightHand']


def track(name, arity=3, keys=2):
    return Track(name, times=list(range(keys)), values=[0.0] * (arity * keys))


@pytest.fixture
def retargeter():
    return BoneRetargeter()


@pytest.mark.parametrize("name,expected", [
    ('mixamorig:Hips', 'hips'),
    ('MIXAMORIG_Left_Up-Leg', 'leftupleg'),
    ('Armature_Spine.001', 'spine.001'),
    ('  Head ', 'head'),
])
def test_normalize(retargeter, name, expected):
    assert retargeter.normalize(name) == expected


def test_longest_prefix_stripped_once(retargeter):
    assert retargeter.normalize('mixamorig:mixamorigHips') == 'mixamorighips'


def test_exact_match_after_prefix_strip(retargeter):
    match = retargeter.match('mixamorig:Hips', SKELETON)
    assert match.target == 'Hips'
    assert match.tier is MatchTier.EXACT
    assert match.score == 1.0


def test_table_match(retargeter):
    match = retargeter.match('mixamorig:LeftUpLeg', SKELETON)
    assert match.target == 'leftUpperLeg'
    assert match.tier is MatchTier.TABLE


def test_table_match_is_symmetric(retargeter):
    assert retargeter.match('pelvis', ['Hips']).target == 'Hips'
    assert retargeter.match('Hips', ['Pelvis']).target == 'Pelvis'


def test_fuzzy_match(retargeter):
    match = retargeter.match('LeftFooot', SKELETON)
    assert match.target == 'LeftFoot'
    assert match.tier is MatchTier.FUZZY
    assert match.score == pytest.approx(1 - 1 / 9)


def test_unresolved_bone(retargeter):
    match = retargeter.match('Xyzzy123', SKELETON)
    assert match.target is None
    assert match.tier is MatchTier.UNRESOLVED
    assert not match.resolved
    assert retargeter.retarget_bone('Xyzzy123', SKELETON) is None


def test_threshold_is_exclusive():
    # 'abcde' vs 'abxyz': similarity exactly 0.4
    assert similarity('abcde', 'abxyz') == pytest.approx(0.4)
    assert BoneRetargeter(CodecConfig(fuzzy_threshold=0.4)).match('abcde', ['abxyz']).target is None
    assert BoneRetargeter(CodecConfig(fuzzy_threshold=0.39)).match('abcde', ['abxyz']).target == 'abxyz'


def test_custom_vendor_prefixes():
    retargeter = BoneRetargeter(CodecConfig(vendor_prefixes=('bip01_',)))
    assert retargeter.match('Bip01_Head', SKELETON).tier is MatchTier.EXACT


def test_levenshtein():
    assert levenshtein_distance('kitten', 'sitting') == 3
    assert levenshtein_distance('', 'abc') == 3
    assert levenshtein_distance('same', 'same') == 0
    assert similarity('', '') == 1.0


def test_retarget_renames_tracks_with_provenance(retargeter, caplog):
    clip = AnimationClip('Walk', tracks=[
        track('mixamorig:Hips.position'),
        track('mixamorig:Hips.quaternion', arity=4),
        track('mixamorig:LeftUpLeg.quaternion', arity=4),
        track('Xyzzy123.position'),
    ])
    with caplog.at_level(logging.WARNING):
        result = retargeter.retarget(clip, SKELETON)

    assert [t.target_name for t in result.tracks] == [
        'Hips.position', 'Hips.quaternion', 'leftUpperLeg.quaternion',
    ]
    assert [p.match.tier for p in result.provenance] == [
        MatchTier.EXACT, MatchTier.EXACT, MatchTier.TABLE, MatchTier.UNRESOLVED,
    ]
    assert result.provenance[3].renamed_to is None
    assert result.tier_counts() == {'exact': 2, 'table': 1, 'fuzzy': 0, 'unresolved': 1}

    assert len(result.diagnostics) == 1
    warning = result.diagnostics[0]
    assert isinstance(warning, UnresolvedBoneWarning)
    assert warning.track_name == 'Xyzzy123.position'
    assert warning.bone_name == 'Xyzzy123'
    assert "Xyzzy123" in caplog.text


def test_retarget_keeps_values_and_property(retargeter):
    source = Track('mixamorig:Hips.scale', times=[0, 1], values=[1, 1, 1, 2, 2, 2])
    result = retargeter.retarget([source], SKELETON)

    renamed = result.tracks[0]
    assert renamed.target_name == 'Hips.scale'
    assert renamed.declared_property is source.declared_property
    assert list(renamed.values) == list(source.values)
    assert source.target_name == 'mixamorig:Hips.scale'
