#!/usr/bin/env python3
"""
Base Exporter Module
Abstract base class ensuring consistent interface across all exporters

Exporters receive a Document plus the extension snapshots captured when it
was loaded, so they stay independent of how the document was read.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from core.config import CodecConfig, DEFAULT_CONFIG

if TYPE_CHECKING:
    from core.document import Document
    from core.extension_preserver import ExtensionTable

logger = logging.getLogger(__name__)


class BaseExporter(ABC):
    """Abstract base class for all format exporters

    Subclasses turn a Document into one container format. Progress
    messages, output path checks and result summaries are shared here.
    """

    def __init__(self, config: CodecConfig = DEFAULT_CONFIG, progress_callback=None):
        """Initialize exporter

        Args:
            config: Codec configuration shared with the readers
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
    def export(self, document: 'Document', output_path, extensions: 'ExtensionTable' = None):
        """Export a document to a file

        Args:
            document: Document to write
            output_path: Destination file path
            extensions: Extension snapshots captured at load, or None

        Returns:
            dict: Export results with at least:
                  - 'success': bool
                  - 'files': list of created file paths
                  - 'message': str status message
        """
        pass

    @abstractmethod
    def get_format_name(self):
        """Return human-readable format name"""
        pass

    def validate_output_path(self, output_path):
        """Validate an output file path and create its directory if needed

        Args:
            output_path: Destination file path

        Returns:
            Path: Validated Path object

        Raises:
            ValueError: If path is invalid
        """
        path = Path(output_path)

        if path.exists() and path.is_dir():
            raise ValueError(f"Output path is a directory: {path}")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ValueError(f"Cannot create output directory {path.parent}: {e}")

        return path

    def get_export_summary(self, result):
        """Generate human-readable summary of export results

        Args:
            result: Export result dict from export() method

        Returns:
            str: Formatted summary text
        """
        lines = []
        status = "Complete" if result.get('success') else "Failed"
        lines.append(f"{self.get_format_name()} Export {status}")

        files = result.get('files', [])
        if files:
            lines.append(f"  Files created: {len(files)}")
            for file_path in files:
                lines.append(f"    - {Path(file_path).name}")

        if 'message' in result:
            lines.append(f"  {result['message']}")

        return "\n".join(lines)
