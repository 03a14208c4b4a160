"""
SessionTap Mitmproxy Addon

Observes ingestion requests passing through mitmproxy and appends them to the
capture log. The addon never modifies a flow; forwarding stays mitmproxy's job.
"""

import sys
from typing import Dict, Optional
from urllib.parse import urlparse

from mitmproxy import http

from ..common.capture_log import CaptureStore
from ..common.models import RecordKind
from .decompress import capture_payload
from .filters import IngestionFilter
from .utils import ANSI_RESET, calc_duration, status_color, summarize_record

# Flow metadata key marking flows that were captured
CAPTURE_METADATA_KEY = 'sessiontap_kind'


class CaptureAddon:
    """
    Mitmproxy addon that captures analytics ingestion traffic.

    The `request` hook persists the body before it is forwarded, so traffic is
    captured even when the upstream rejects it. The `response` hook only
    reports the upstream status.
    """

    def __init__(
        self,
        store: CaptureStore,
        ingestion_filter: Optional[IngestionFilter] = None,
        quiet: bool = False,
        verbose: bool = False
    ):
        """
        Initialize addon.

        Args:
            store: Capture store receiving one record per ingestion request
            ingestion_filter: Decides which requests are captured and as what kind
            quiet: Suppress console output
            verbose: Also report requests that are passed through uncaptured
        """
        self.store = store
        self.ingestion_filter = ingestion_filter or IngestionFilter()
        self.quiet = quiet
        self.verbose = verbose
        self.counts: Dict[RecordKind, int] = {kind: 0 for kind in RecordKind}

    def request(self, flow: http.HTTPFlow) -> None:
        """
        Called when a complete HTTP request has been read from the client.

        Args:
            flow: The HTTP flow containing the request
        """
        req = flow.request
        path = urlparse(req.path).path
        kind = self.ingestion_filter.classify(req.method, req.host, path)

        if kind is None:
            if self.verbose:
                print(f"⏭️  Passing through: {req.method} {req.host}{path}", flush=True)
            return

        try:
            record = capture_payload(
                kind,
                req.raw_content or b'',
                dict(req.headers),
                dict(req.query)
            )
            self.store.append(record)
        except Exception as e:
            # A failed capture must never break the proxied request
            print(f"Error capturing {req.method} {path}: {e}", file=sys.stderr, flush=True)
            return

        flow.metadata[CAPTURE_METADATA_KEY] = kind.value
        self.counts[kind] += 1

        if not self.quiet:
            print(summarize_record(record), flush=True)

    def response(self, flow: http.HTTPFlow) -> None:
        """
        Called when the upstream response for a flow is received.

        Args:
            flow: The HTTP flow containing request and response
        """
        if self.quiet or CAPTURE_METADATA_KEY not in flow.metadata:
            return

        status = flow.response.status_code if flow.response else 0
        color = status_color(status)
        print(f"   ↳ {flow.request.method} {flow.request.pretty_url} → "
              f"{color}{status}{ANSI_RESET} ({calc_duration(flow)} ms)", flush=True)

    def done(self) -> None:
        """Called when mitmproxy is shutting down."""
        total = sum(self.counts.values())
        if not total:
            print("\nNo ingestion requests captured.", flush=True)
            return

        print(f"\n📊 Captured {self.counts[RecordKind.EVENT]} event request(s) and "
              f"{self.counts[RecordKind.RECORDING]} recording request(s) "
              f"in {self.store.data_dir}", flush=True)
