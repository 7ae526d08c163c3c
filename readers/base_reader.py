#!/usr/bin/env python3
"""
Base Reader Module
Abstract interface for readers of the binary glTF family (GLB, VRM, VRMA)
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from core.config import CodecConfig, DEFAULT_CONFIG

from .glb_container import GlbContainer, decode_container

logger = logging.getLogger(__name__)


class BaseReader(ABC):
    """Abstract base class for container readers

    Provides a consistent interface for turning container bytes into
    engine structures. Format-specific readers (GltfReader,
    AnimationClipReader) implement read_bytes().
    """

    def __init__(self, config: CodecConfig = DEFAULT_CONFIG, progress_callback=None):
        """Initialize reader

        Args:
            config: Codec configuration shared with the exporter and edits
            progress_callback: Optional function to call for progress updates
                              Signature: callback(message: str) -> None
        """
        self.config = config
        self.progress_callback = progress_callback

    def log(self, message):
        """Send progress/status message

        Args:
            message: Message to log
        """
        if self.progress_callback:
            self.progress_callback(message)
        logger.info(message)

    @abstractmethod
    def get_format_name(self) -> str:
        """Return human-readable format name (e.g., 'glTF Binary')"""
        pass

    @abstractmethod
    def read_bytes(self, data: bytes) -> Any:
        """Decode container bytes

        Args:
            data: Complete file contents

        Returns:
            Reader-specific result
        """
        pass

    def read_file(self, file_path) -> Any:
        """Read a file from disk and decode it with read_bytes()"""
        path = Path(file_path)
        self.log(f"Reading {path.name}")
        return self.read_bytes(path.read_bytes())

    def decode(self, data: bytes) -> GlbContainer:
        return decode_container(data, self.config)
