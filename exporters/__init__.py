#!/usr/bin/env python3
"""
Exporters Module
Writers for the binary glTF family
"""

from .base_exporter import BaseExporter
from .glb_exporter import GlbExporter, default_output_name

__all__ = [
    'BaseExporter',
    'GlbExporter',
    'default_output_name',
]
