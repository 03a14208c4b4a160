"""
Wire compression codec.

Handles the two compression layers of ingestion traffic:
- the request body (gzip/deflate/br, signalled by header, magic bytes or query flag)
- nested snapshot blobs (gzip bytes carried inside JSON as a latin-1 string)
"""

import gzip
import zlib
from typing import Mapping, Optional

import brotli

from ..common.errors import NestedDecompressionError, RecompressionFailure

GZIP_MAGIC = b'\x1f\x8b'
GZIP_MAGIC_TEXT = '\x1f\x8b'

# Query flag values the browser client uses for gzip bodies
GZIP_QUERY_FLAGS = ('gzip-js', 'gzip')

# Byte-encoding of nested blobs: one character per byte
BLOB_TEXT_ENCODING = 'latin-1'


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def has_gzip_magic(body: bytes) -> bool:
    return len(body) >= 2 and body[:2] == GZIP_MAGIC


def detect_compression(body: bytes, headers: Mapping[str, str], query: Mapping[str, str]) -> Optional[str]:
    """
    Work out which compression a request body uses.

    Any single signal is sufficient:
    - Content-Encoding header
    - gzip magic bytes at the start of the body
    - `compression` query flag

    Args:
        body: Raw request body
        headers: Request headers
        query: Request query parameters

    Returns:
        Normalized scheme ('gzip', 'deflate', 'br') or another declared
        scheme as given, or None when the body is not compressed
    """
    encoding = (_header(headers, 'content-encoding') or '').strip().lower()
    if encoding and encoding != 'identity':
        return 'gzip' if encoding == 'x-gzip' else encoding

    if has_gzip_magic(body):
        return 'gzip'

    flag = (query.get('compression') or '').strip().lower()
    if flag in GZIP_QUERY_FLAGS:
        return 'gzip'
    return flag or None


def decompress_body(body: bytes, scheme: str) -> bytes:
    """
    Decompress a request body.

    Raises:
        ValueError: If the scheme is unsupported or the body is corrupt
    """
    try:
        if scheme == 'gzip':
            return gzip.decompress(body)
        if scheme == 'deflate':
            try:
                return zlib.decompress(body)
            except zlib.error:
                # Raw deflate stream without zlib header
                return zlib.decompress(body, -zlib.MAX_WBITS)
        if scheme == 'br':
            return brotli.decompress(body)
    except (OSError, EOFError, zlib.error, brotli.error) as e:
        raise ValueError(f"Cannot decompress {scheme} body: {e}") from e
    raise ValueError(f"Unsupported compression scheme: {scheme}")


def compress_body(body: bytes) -> bytes:
    """Gzip a body for the wire. mtime is pinned so output is reproducible."""
    return gzip.compress(body, mtime=0)


def is_compressed_blob(data: str) -> bool:
    """Whether a nested snapshot string carries gzip bytes."""
    return len(data) > 2 and data.startswith(GZIP_MAGIC_TEXT)


def decompress_blob(data: str) -> str:
    """
    Expand a nested snapshot blob into its UTF-8 text.

    Raises:
        NestedDecompressionError: If the blob is not valid latin-1 encoded gzip
    """
    try:
        return gzip.decompress(data.encode(BLOB_TEXT_ENCODING)).decode('utf-8')
    except (UnicodeError, OSError, EOFError, zlib.error) as e:
        raise NestedDecompressionError(str(e)) from e


def recompress_blob(text: str) -> str:
    """
    Compress snapshot text back into the wire's latin-1 gzip string.

    Raises:
        RecompressionFailure: If the text cannot be encoded
    """
    try:
        return compress_body(text.encode('utf-8')).decode(BLOB_TEXT_ENCODING)
    except (UnicodeError, AttributeError, zlib.error) as e:
        raise RecompressionFailure(f"Cannot recompress snapshot blob: {e}") from e
