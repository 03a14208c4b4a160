"""
SessionTap Capture Module

Capture-side pipeline for ingestion traffic.

This module provides:
- Compression detection and the wire codec
- Typed payload trees and walkers
- Nested snapshot decompression
- The mitmproxy capture addon
"""

from .codec import decompress_blob, detect_compression, recompress_blob
from .decompress import capture_payload, expand_nested_snapshots
from .filters import IngestionFilter
from .payload import ArrayNode, NodeTransformer, NodeVisitor, ObjectNode, RawNode, ScalarNode, from_python

__all__ = [
    'capture_payload',
    'expand_nested_snapshots',
    'decompress_blob',
    'detect_compression',
    'recompress_blob',
    'IngestionFilter',
    'ArrayNode',
    'NodeTransformer',
    'NodeVisitor',
    'ObjectNode',
    'RawNode',
    'ScalarNode',
    'from_python',
]
