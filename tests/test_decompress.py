"""
Tests for capture-time decompression.

Tests the payload tree walkers and how a raw ingestion body becomes a
CapturedRecord:
- Typed node conversion and visitors
- Top-level body decoding
- Nested snapshot expansion and error annotation
- Raw bytes preserved untouched
"""

import gzip
import json

import pytest

from src.sessiontap.capture.codec import decompress_blob
from src.sessiontap.capture.decompress import (
    DECOMPRESSION_ERROR_KEY,
    ORIGINAL_COMPRESSED_FLAG,
    capture_payload,
    decode_body,
    expand_nested_snapshots,
)
from src.sessiontap.capture.payload import (
    ArrayNode,
    NodeVisitor,
    ObjectNode,
    ScalarNode,
    PatternRewriter,
    RawNode,
    ScalarRewriter,
    from_python,
)
from src.sessiontap.common.models import RecordKind


def gzip_blob(text: str) -> str:
    return gzip.compress(text.encode('utf-8')).decode('latin-1')


def deep_dom(depth):
    """Full snapshot DOM with `depth` nested elements, built without recursion."""
    node = {'type': 3, 'id': depth + 1, 'textContent': 'leaf'}
    for level in range(depth, 0, -1):
        node = {'type': 2, 'id': level, 'tagName': 'div', 'attributes': {}, 'childNodes': [node]}
    return {'node': {'type': 0, 'id': 0, 'childNodes': [node]}, 'initialOffset': {'top': 0, 'left': 0}}


def dom_depth(data):
    depth, node = 0, data['node']
    while node.get('childNodes'):
        node = node['childNodes'][0]
        depth += 1
    return depth


@pytest.fixture
def dom_text():
    return json.dumps({'node': {'type': 0, 'childNodes': [{'type': 2, 'tagName': 'html'}]}})


@pytest.fixture
def recording_events(dom_text):
    """Snapshot events as the browser client posts them to /s/."""
    return [
        {
            'event': '$snapshot',
            'properties': {
                '$session_id': 'session-A',
                '$window_id': 'window-1',
                '$snapshot_data': [
                    {'type': 2, 'data': gzip_blob(dom_text), 'timestamp': 1700000000000},
                    {'type': 3, 'data': {'source': 1}, 'timestamp': 1700000000500},
                ],
            },
        }
    ]


class TestPayloadTree:
    """Tagged-union nodes and walkers."""

    def test_from_python_builds_typed_nodes(self):
        tree = from_python({'a': [1, 'x', None], 'b': {'c': True}})

        assert isinstance(tree, ObjectNode)
        assert isinstance(tree.get('a'), ArrayNode)
        assert isinstance(tree.get('a').items[1], ScalarNode)
        assert tree.get('b').scalar('c') is True

    def test_round_trip_to_python(self):
        value = {'a': [1, 2.5, 'x', None, {'b': False}]}
        assert from_python(value).to_python() == value

    def test_unsupported_value(self):
        with pytest.raises(TypeError):
            from_python({'a': object()})

    def test_scalar_default_for_non_scalar(self):
        tree = from_python({'a': [1]})
        assert tree.scalar('a', 'default') == 'default'
        assert tree.scalar('missing') is None

    def test_visitor_dispatches_by_kind(self):
        class ScalarCounter(NodeVisitor):
            def __init__(self):
                self.count = 0

            def visit_scalar(self, node):
                self.count += 1
                return node

        counter = ScalarCounter()
        counter.visit(from_python({'a': [1, 2, {'b': 3}], 'c': 'x'}))
        assert counter.count == 4

    def test_scalar_rewriter_replaces_exact_matches_only(self):
        tree = from_python({'id': 'old', 'nested': ['old', 'older'], 'old': 1})
        result = ScalarRewriter({'old': 'new'}).visit(tree).to_python()

        assert result == {'id': 'new', 'nested': ['new', 'older'], 'old': 1}

    def test_snapshot_data_kept_as_raw_leaf(self):
        data = {'node': {'id': 'old'}}
        tree = from_python({'properties': {'$snapshot_data': [{'type': 2, 'data': data}]}})
        snapshot = tree.get('properties').get('$snapshot_data').items[0]

        assert isinstance(snapshot.get('data'), RawNode)
        assert ScalarRewriter({'old': 'new'}).visit(tree).to_python()['properties']['$snapshot_data'][0]['data'] is data

    def test_string_snapshot_data_stays_scalar(self):
        tree = from_python({'$snapshot_data': [{'type': 2, 'data': 'blob'}]})
        assert tree.get('$snapshot_data').items[0].scalar('data') == 'blob'

    def test_deep_dom_does_not_recurse(self):
        events = [{'properties': {'$snapshot_data': [{'type': 2, 'data': deep_dom(300)}]}}]
        assert dom_depth(from_python(events).to_python()[0]['properties']['$snapshot_data'][0]['data']) == 301

    def test_pattern_rewriter_substitutes_inside_strings(self):
        tree = from_python({'url': '/?token=phc_abc1&x=phc_Z9', 'n': 3})
        result = PatternRewriter(r'phc_[a-zA-Z0-9]+', 'phc_new').visit(tree).to_python()

        assert result == {'url': '/?token=phc_new&x=phc_new', 'n': 3}


class TestExpandNestedSnapshots:
    """Nested snapshot blob expansion."""

    def test_compressed_full_snapshot_expanded_and_flagged(self, recording_events, dom_text):
        expanded = expand_nested_snapshots(recording_events)
        snapshot = expanded[0]['properties']['$snapshot_data'][0]

        assert snapshot['data'] == dom_text
        assert snapshot[ORIGINAL_COMPRESSED_FLAG] is True

    def test_other_snapshots_untouched(self, recording_events):
        expanded = expand_nested_snapshots(recording_events)
        incremental = expanded[0]['properties']['$snapshot_data'][1]

        assert incremental == {'type': 3, 'data': {'source': 1}, 'timestamp': 1700000000500}

    def test_uncompressed_string_data_not_flagged(self):
        events = [{'properties': {'$snapshot_data': [{'type': 2, 'data': '{"node":{}}'}]}}]
        snapshot = expand_nested_snapshots(events)[0]['properties']['$snapshot_data'][0]

        assert ORIGINAL_COMPRESSED_FLAG not in snapshot

    def test_batch_envelope(self, recording_events):
        expanded = expand_nested_snapshots({'batch': recording_events})
        snapshot = expanded['batch'][0]['properties']['$snapshot_data'][0]

        assert snapshot[ORIGINAL_COMPRESSED_FLAG] is True

    def test_failed_blob_annotated_and_siblings_still_expanded(self, recording_events, dom_text):
        snapshots = recording_events[0]['properties']['$snapshot_data']
        snapshots.insert(0, {'type': 2, 'data': '\x1f\x8b\x08broken', 'timestamp': 1})

        expanded = expand_nested_snapshots(recording_events)
        broken, good = expanded[0]['properties']['$snapshot_data'][:2]

        assert DECOMPRESSION_ERROR_KEY in broken
        assert broken['data'] == '\x1f\x8b\x08broken'
        assert good['data'] == dom_text

    def test_input_not_mutated(self, recording_events):
        original = json.loads(json.dumps(recording_events))
        expand_nested_snapshots(recording_events)
        assert recording_events == original


class TestDecodeBody:
    """Top-level body decoding."""

    def test_plain_json(self):
        assert decode_body(b'{"event":"x"}', {}, {}) == {'event': 'x'}

    def test_gzip_by_query_flag(self):
        body = gzip.compress(b'[{"event":"x"}]')
        assert decode_body(body, {}, {'compression': 'gzip-js'}) == [{'event': 'x'}]

    def test_empty_body(self):
        assert decode_body(b'', {}, {}) is None

    def test_undecodable_body(self):
        assert decode_body(b'\x00\x01 not json', {}, {}) is None


class TestCapturePayload:
    """CapturedRecord construction."""

    def test_raw_bytes_preserved_and_tree_expanded(self, recording_events, dom_text):
        body = gzip.compress(json.dumps(recording_events).encode('utf-8'))
        record = capture_payload(
            RecordKind.RECORDING,
            body,
            {'Content-Type': 'text/plain'},
            {'compression': 'gzip-js', 'ver': '1.265.0'},
            captured_at=1700000001000
        )

        assert record.kind == RecordKind.RECORDING
        assert record.raw_bytes == body
        assert record.captured_at == 1700000001000
        assert record.headers == {'content-type': 'text/plain'}
        assert record.query == {'compression': 'gzip-js', 'ver': '1.265.0'}

        snapshot = record.events()[0]['properties']['$snapshot_data'][0]
        assert snapshot['data'] == dom_text
        assert decompress_blob(recording_events[0]['properties']['$snapshot_data'][0]['data']) == dom_text

    def test_undecodable_body_still_captured(self):
        record = capture_payload(RecordKind.EVENT, b'\x1f\x8b\x08junk', {}, {}, captured_at=5)

        assert record.raw_bytes == b'\x1f\x8b\x08junk'
        assert record.decompressed is None
        assert record.events() == []

    def test_deep_uncompressed_dom_captured(self):
        events = [{'event': '$snapshot', 'properties': {
            '$session_id': 'session-A',
            '$snapshot_data': [{'type': 2, 'data': deep_dom(300), 'timestamp': 1}],
        }}]
        body = gzip.compress(json.dumps(events).encode('utf-8'))

        record = capture_payload(RecordKind.RECORDING, body, {}, {'compression': 'gzip-js'}, captured_at=5)

        assert record.raw_bytes == body
        snapshot = record.events()[0]['properties']['$snapshot_data'][0]
        assert dom_depth(snapshot['data']) == 301
        assert record.to_line().endswith('\n')

    def test_captured_at_defaults_to_now(self):
        record = capture_payload(RecordKind.EVENT, b'{}', {}, {})
        assert record.captured_at > 1600000000000
