"""
DOM snapshot repair.

Recorded DOM trees occasionally contain element nodes without an attributes
container, which the replay player cannot render. Repair gives every such
node an empty one and changes nothing else. Repairing twice is a no-op.
"""

import json
import logging
from typing import Any, Dict, Iterable

from ..capture.codec import is_compressed_blob
from ..capture.payload import SNAPSHOT_DATA_KEY
from ..common.utils import compact_json

logger = logging.getLogger("sessiontap.replay")

ELEMENT_NODE_TYPE = 2
FULL_SNAPSHOT_TYPE = 2
INCREMENTAL_SNAPSHOT_TYPE = 3
MUTATION_SOURCE = 0


def repair_node(node: Any) -> int:
    """
    Repair a DOM node and all of its descendants in place, depth-first.

    Args:
        node: Serialized DOM node (dict with type, attributes, childNodes)

    Returns:
        Number of nodes that received an attributes container
    """
    repaired = 0
    stack = [node]
    while stack:
        current = stack.pop()
        if not isinstance(current, dict):
            continue

        if current.get('type') == ELEMENT_NODE_TYPE and current.get('attributes') is None:
            current['attributes'] = {}
            repaired += 1

        children = current.get('childNodes')
        if isinstance(children, list):
            stack.extend(reversed(children))

    return repaired


def repair_snapshot_data(data: Dict[str, Any], snapshot_type: Any) -> int:
    """Repair the DOM nodes carried by a snapshot's data object."""
    if snapshot_type == FULL_SNAPSHOT_TYPE:
        return repair_node(data.get('node'))

    if snapshot_type == INCREMENTAL_SNAPSHOT_TYPE and data.get('source') == MUTATION_SOURCE:
        return sum(
            repair_node(added.get('node'))
            for added in data.get('adds') or []
            if isinstance(added, dict)
        )

    return 0


def repair_snapshot(snapshot: Dict[str, Any]) -> int:
    """
    Repair one recorded snapshot in place.

    Data held as a JSON string is parsed, repaired and written back only if a
    node was repaired. Data that is still a compressed blob is left alone.

    Returns:
        Number of nodes repaired
    """
    snapshot_type = snapshot.get('type')
    if snapshot_type not in (FULL_SNAPSHOT_TYPE, INCREMENTAL_SNAPSHOT_TYPE):
        return 0

    data = snapshot.get('data')
    if isinstance(data, dict):
        return repair_snapshot_data(data, snapshot_type)

    if not isinstance(data, str) or not data or is_compressed_blob(data):
        return 0

    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse DOM data: {e}")
        return 0
    if not isinstance(parsed, dict):
        return 0

    repaired = repair_snapshot_data(parsed, snapshot_type)
    if repaired:
        snapshot['data'] = compact_json(parsed)
    return repaired


def repair_events(events: Iterable[Dict[str, Any]]) -> int:
    """
    Repair every snapshot of a list of recorded events in place.

    Returns:
        Number of nodes repaired
    """
    repaired = 0
    for event in events:
        properties = event.get('properties')
        if not isinstance(properties, dict):
            continue
        for snapshot in properties.get(SNAPSHOT_DATA_KEY) or []:
            if isinstance(snapshot, dict):
                repaired += repair_snapshot(snapshot)

    if repaired:
        logger.debug(f"Repaired {repaired} DOM node(s) without attributes")
    return repaired
