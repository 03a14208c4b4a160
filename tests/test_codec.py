"""
Tests for the wire compression codec.

Covers compression detection, body decompression and the nested snapshot
blob encoding (gzip bytes carried in a latin-1 string).
"""

import gzip
import zlib

import brotli
import pytest

from src.sessiontap.capture.codec import (
    compress_body,
    decompress_blob,
    decompress_body,
    detect_compression,
    has_gzip_magic,
    is_compressed_blob,
    recompress_blob,
)
from src.sessiontap.common.errors import NestedDecompressionError, RecompressionFailure


def gzip_blob(text: str) -> str:
    """Encode text the way the browser client nests snapshot blobs."""
    return gzip.compress(text.encode('utf-8')).decode('latin-1')


class TestDetectCompression:
    """Any one signal is enough to detect compression."""

    def test_content_encoding_header(self):
        assert detect_compression(b'{}', {'Content-Encoding': 'gzip'}, {}) == 'gzip'

    def test_header_lookup_is_case_insensitive(self):
        assert detect_compression(b'{}', {'content-encoding': 'br'}, {}) == 'br'

    def test_x_gzip_normalized(self):
        assert detect_compression(b'{}', {'Content-Encoding': 'x-gzip'}, {}) == 'gzip'

    def test_identity_encoding_is_not_compression(self):
        assert detect_compression(b'{}', {'Content-Encoding': 'identity'}, {}) is None

    def test_magic_bytes(self):
        body = gzip.compress(b'[]')
        assert detect_compression(body, {}, {}) == 'gzip'

    def test_query_flag_gzip_js(self):
        assert detect_compression(b'not-magic', {}, {'compression': 'gzip-js'}) == 'gzip'

    def test_query_flag_other_scheme_passed_through(self):
        assert detect_compression(b'abc', {}, {'compression': 'base64'}) == 'base64'

    def test_plain_body(self):
        assert detect_compression(b'{"event": "x"}', {}, {}) is None

    def test_has_gzip_magic_short_body(self):
        assert not has_gzip_magic(b'\x1f')
        assert has_gzip_magic(b'\x1f\x8b\x08')


class TestDecompressBody:
    """Top-level body decompression."""

    def test_gzip(self):
        assert decompress_body(gzip.compress(b'hello'), 'gzip') == b'hello'

    def test_zlib_deflate(self):
        assert decompress_body(zlib.compress(b'hello'), 'deflate') == b'hello'

    def test_raw_deflate(self):
        compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
        raw = compressor.compress(b'hello') + compressor.flush()
        assert decompress_body(raw, 'deflate') == b'hello'

    def test_brotli(self):
        assert decompress_body(brotli.compress(b'hello'), 'br') == b'hello'

    def test_corrupt_gzip_raises_value_error(self):
        with pytest.raises(ValueError, match="Cannot decompress gzip"):
            decompress_body(b'\x1f\x8bgarbage', 'gzip')

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError, match="Unsupported compression scheme"):
            decompress_body(b'abc', 'base64')

    def test_compress_body_is_reproducible(self):
        assert compress_body(b'same input') == compress_body(b'same input')


class TestNestedBlobs:
    """Nested snapshot blobs."""

    def test_is_compressed_blob(self):
        assert is_compressed_blob(gzip_blob('{"a":1}'))
        assert not is_compressed_blob('{"a":1}')
        assert not is_compressed_blob('\x1f\x8b')

    def test_decompress_blob(self):
        assert decompress_blob(gzip_blob('{"node":"é"}')) == '{"node":"é"}'

    def test_decompress_corrupt_blob(self):
        with pytest.raises(NestedDecompressionError):
            decompress_blob('\x1f\x8b\x08corrupt')

    def test_decompress_non_latin1_blob(self):
        with pytest.raises(NestedDecompressionError):
            decompress_blob('\x1f\x8b€')

    def test_recompress_restores_original_text(self):
        text = '{"type":2,"childNodes":[{"text":"Grüße ✓"}]}'
        blob = recompress_blob(text)

        assert is_compressed_blob(blob)
        assert decompress_blob(blob) == text

    def test_recompress_lone_surrogate_fails(self):
        with pytest.raises(RecompressionFailure):
            recompress_blob('bad \ud800 text')
