#!/usr/bin/env python3
"""
Readers Module
Readers for the binary glTF family (GLB, VRM, VRMA)
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from core.errors import MalformedContainerError

from .base_reader import BaseReader
from .clip_reader import AnimationClipReader
from .glb_container import (
    GlbContainer,
    decode_container,
    encode_container,
    is_glb,
    read_container_json,
)
from .gltf_reader import GltfReader, LoadedAsset, read_accessor

# Supported file extensions
GLB_EXTENSIONS = {'.glb'}
VRM_EXTENSIONS = {'.vrm'}
VRMA_EXTENSIONS = {'.vrma'}
SUPPORTED_EXTENSIONS = GLB_EXTENSIONS | VRM_EXTENSIONS | VRMA_EXTENSIONS

# An animation file carries at most this many meshes
VRMA_MAX_MESHES = 2


class FileType(Enum):
    GLB = "GLB"
    VRM = "VRM"
    VRMA = "VRMA"
    UNKNOWN = "UNKNOWN"


def has_vrm_content(gltf: Dict[str, Any]) -> bool:
    extensions = gltf.get('extensions') or {}
    return 'VRM' in extensions or 'VRMC_vrm' in extensions


def has_vrma_content(gltf: Dict[str, Any]) -> bool:
    has_animations = bool(gltf.get('animations'))
    minimal_meshes = len(gltf.get('meshes', [])) <= VRMA_MAX_MESHES
    has_extension = 'VRMC_vrm_animation' in (gltf.get('extensions') or {})
    return has_animations and (minimal_meshes or has_extension)


def detect_file_type(data: bytes, filename: Optional[str] = None) -> FileType:
    """Classify a file from its extension and contents

    VRMA wins over VRM, which wins over plain GLB. Content that is not a
    valid container only counts through its extension.

    Args:
        data: File contents
        filename: Original file name, used for its extension

    Returns:
        FileType: Detected type
    """
    ext = Path(filename).suffix.lower() if filename else ''

    gltf = None
    if is_glb(data):
        try:
            gltf = read_container_json(data)
        except MalformedContainerError:
            gltf = None

    vrm_content = gltf is not None and has_vrm_content(gltf)
    vrma_content = gltf is not None and has_vrma_content(gltf)

    if ext in VRMA_EXTENSIONS or vrma_content:
        return FileType.VRMA
    if ext in VRM_EXTENSIONS or vrm_content:
        return FileType.VRM
    if ext in GLB_EXTENSIONS or (not ext and gltf is not None):
        return FileType.GLB
    return FileType.UNKNOWN


def extract_vrm_metadata(gltf: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Title/author/version of a VRM model

    Args:
        gltf: Parsed glTF JSON

    Returns:
        dict: Metadata with 'spec_version', 'title', 'author', 'version',
              or None when the file is not VRM
    """
    extensions = gltf.get('extensions') or {}

    if 'VRMC_vrm' in extensions:
        vrm = extensions['VRMC_vrm'] or {}
        meta = vrm.get('meta') or {}
        authors = meta.get('authors') or []
        return {
            'spec_version': vrm.get('specVersion', '1.0'),
            'title': meta.get('name'),
            'author': ', '.join(authors) if authors else None,
            'version': meta.get('version'),
            'license': meta.get('licenseUrl'),
        }

    if 'VRM' in extensions:
        vrm = extensions['VRM'] or {}
        meta = vrm.get('meta') or {}
        return {
            'spec_version': vrm.get('specVersion', '0.0'),
            'title': meta.get('title'),
            'author': meta.get('author'),
            'version': meta.get('version'),
            'license': meta.get('licenseName'),
        }

    return None


def is_supported_format(input_file):
    """Check if a file has a supported extension

    Args:
        input_file: Path to input file

    Returns:
        bool: True if format is supported
    """
    return Path(input_file).suffix.lower() in SUPPORTED_EXTENSIONS


__all__ = [
    'BaseReader',
    'GltfReader',
    'AnimationClipReader',
    'LoadedAsset',
    'GlbContainer',
    'FileType',
    'decode_container',
    'encode_container',
    'read_container_json',
    'read_accessor',
    'is_glb',
    'detect_file_type',
    'extract_vrm_metadata',
    'is_supported_format',
    'SUPPORTED_EXTENSIONS',
]
