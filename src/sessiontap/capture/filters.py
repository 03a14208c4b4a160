"""
Filtering logic for SessionTap capture.

Decides whether a proxied request is ingestion traffic worth capturing and,
if so, whether it carries application events or a recording stream.
"""

import logging
from typing import List, Optional, Tuple

from ..common.models import RecordKind

logger = logging.getLogger("sessiontap.capture")

# Path prefixes the browser client posts to, most specific first
DEFAULT_ROUTES: Tuple[Tuple[str, RecordKind], ...] = (
    ('/s/', RecordKind.RECORDING),
    ('/i/v0/e/', RecordKind.EVENT),
    ('/e/', RecordKind.EVENT),
    ('/batch/', RecordKind.EVENT),
)


class IngestionFilter:
    """
    Classifies requests seen by the capture proxy.

    Supports:
    - Exact host matching (e.g., "us.i.posthog.com")
    - Wildcard matching (e.g., "*.posthog.com")
    - Path prefix routing to a record kind
    """

    def __init__(
        self,
        host_filters: Optional[List[str]] = None,
        routes: Tuple[Tuple[str, RecordKind], ...] = DEFAULT_ROUTES
    ):
        """
        Initialize the filter.

        Args:
            host_filters: Hosts to capture from (supports wildcards); empty means any host
            routes: (path prefix, kind) pairs checked in order
        """
        self.host_filters = [h.strip().lower() for h in (host_filters or []) if h.strip()]
        self.routes = routes

    def matches_host(self, host: str) -> bool:
        """
        Determine if a host passes the host filters.

        Args:
            host: The request hostname (e.g., "us.i.posthog.com")

        Returns:
            True if no host filters are configured or any filter matches
        """
        if not self.host_filters:
            return True

        host = host.lower()
        for filter_host in self.host_filters:
            if filter_host == host:
                return True

            # *.example.com matches api.example.com and example.com itself
            if filter_host.startswith('*.'):
                domain = filter_host[2:]
                if host == domain or host.endswith('.' + domain):
                    return True

        return False

    def classify(self, method: str, host: str, path: str) -> Optional[RecordKind]:
        """
        Work out which capture log a request belongs to.

        Args:
            method: HTTP method
            host: Request host
            path: Request path without query string

        Returns:
            RecordKind to capture as, or None to let the request pass uncaptured
        """
        if method.upper() != 'POST':
            return None

        if not self.matches_host(host):
            logger.debug(f"Skipping {host}{path}: host not in filters")
            return None

        normalized = path if path.endswith('/') else path + '/'
        for prefix, kind in self.routes:
            if normalized.startswith(prefix):
                return kind
        return None

