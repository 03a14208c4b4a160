"""
Capture-time decompression.

Turns an opaque ingestion request body into a CapturedRecord holding both the
untouched wire bytes and a fully expanded tree with nested snapshot blobs
decompressed in place.
"""

import json
import logging
from typing import Any, Mapping, Optional

from ..common.errors import NestedDecompressionError
from ..common.models import CapturedRecord, RecordKind
from ..common.utils import now_ms
from .codec import decompress_blob, decompress_body, detect_compression, is_compressed_blob
from .payload import Node, ObjectNode, ScalarNode, SnapshotTransformer, from_python

logger = logging.getLogger("sessiontap.capture")

FULL_SNAPSHOT_TYPE = 2

# Annotations left on nested blobs for the replay side
ORIGINAL_COMPRESSED_FLAG = '_original_compressed'
DECOMPRESSION_ERROR_KEY = '_decompression_error'


class SnapshotDecompressor(SnapshotTransformer):
    """
    Expands gzip-compressed full snapshot blobs.

    A blob that expands is flagged so it can be recompressed bit-exact on
    replay; a blob that does not is annotated with the error and left as is.
    """

    def __init__(self):
        self.expanded = 0
        self.failed = 0

    def visit_snapshot(self, snapshot: ObjectNode) -> Node:
        if snapshot.scalar('type') != FULL_SNAPSHOT_TYPE:
            return snapshot
        data = snapshot.scalar('data')
        if not isinstance(data, str) or not is_compressed_blob(data):
            return snapshot

        try:
            text = decompress_blob(data)
        except NestedDecompressionError as e:
            self.failed += 1
            logger.warning(f"Could not decompress DOM snapshot: {e}")
            snapshot.set_scalar(DECOMPRESSION_ERROR_KEY, str(e))
            return snapshot

        self.expanded += 1
        snapshot.fields['data'] = ScalarNode(text)
        snapshot.set_scalar(ORIGINAL_COMPRESSED_FLAG, True)
        return snapshot


def expand_nested_snapshots(tree: Any) -> Any:
    """
    Decompress nested snapshot blobs anywhere in a decoded JSON tree.

    Args:
        tree: Decoded JSON (list of events, batch envelope or single event)

    Returns:
        New tree with compressed blobs expanded and annotated
    """
    decompressor = SnapshotDecompressor()
    expanded = decompressor.visit(from_python(tree)).to_python()
    if decompressor.expanded or decompressor.failed:
        logger.debug(f"Nested snapshots: {decompressor.expanded} expanded, {decompressor.failed} failed")
    return expanded


def decode_body(body: bytes, headers: Mapping[str, str], query: Mapping[str, str]) -> Optional[Any]:
    """
    Decode a request body into JSON, decompressing it first when signalled.

    Returns:
        Decoded JSON, or None when the body is empty or cannot be decoded
    """
    if not body:
        return None

    scheme = detect_compression(body, headers, query)
    try:
        text = decompress_body(body, scheme) if scheme else body
        return json.loads(text.decode('utf-8'))
    except (ValueError, UnicodeDecodeError, RecursionError) as e:
        logger.warning(f"Could not decode {len(body)} byte body (compression={scheme}): {e}")
        return None


def capture_payload(
    kind: RecordKind,
    body: bytes,
    headers: Mapping[str, str],
    query: Mapping[str, str],
    captured_at: Optional[int] = None
) -> CapturedRecord:
    """
    Build a CapturedRecord from a raw ingestion request.

    The raw body is always kept. The expanded tree is attached when the body
    decodes; a body that does not decode is still captured.

    Args:
        kind: Event or recording traffic
        body: Raw request body exactly as received
        headers: Request headers
        query: Request query parameters
        captured_at: Capture time in epoch ms (defaults to now)

    Returns:
        The captured record
    """
    decoded = decode_body(body, headers, query)
    decompressed = decoded
    if decoded is not None:
        try:
            decompressed = expand_nested_snapshots(decoded)
        except RecursionError:
            logger.warning(f"Payload of {len(body)} bytes nests too deeply to expand, keeping it as decoded")

    return CapturedRecord(
        kind=kind,
        raw_bytes=bytes(body),
        decompressed=decompressed,
        headers={key.lower(): value for key, value in headers.items()},
        query=dict(query),
        captured_at=captured_at if captured_at is not None else now_ms()
    )
