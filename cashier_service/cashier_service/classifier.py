"""Classification of hosted checkout navigation URLs.

The hosted payment page reports its result only by redirecting. Each URL the
embedded browser navigates to is checked against three predicate groups in
order: settled, pending, failed. The first group that matches wins; a URL
that matches none means the checkout is still in progress.
"""

from typing import Optional
from urllib.parse import parse_qs, urlsplit

from .schemas import CheckoutOutcome

SETTLED_STATUSES = frozenset({"settlement", "capture"})
FAILED_STATUSES = frozenset({"deny", "cancel", "expire", "failure"})
FAILED_STATUS_CODES = frozenset({"400", "401", "402", "403"})


class _Navigation:
    """The parts of a URL the predicates look at."""

    def __init__(self, url: str):
        parts = urlsplit(url.strip())
        self.url = url.lower()
        self.host = (parts.hostname or "").lower()

        # Snap keeps its own route in the fragment, e.g. "#/finish?status_code=200"
        fragment_path, _, fragment_query = parts.fragment.partition("?")
        self.segments = {
            segment.lower()
            for path in (parts.path, fragment_path)
            for segment in path.split("/")
            if segment
        }

        params: dict[str, str] = {}
        for query in (parts.query, fragment_query):
            for key, values in parse_qs(query).items():
                params[key.lower()] = values[-1].strip().lower()
        self.transaction_status = params.get("transaction_status")
        self.status_code = params.get("status_code")

    @property
    def has_settlement_evidence(self) -> bool:
        return self.transaction_status in SETTLED_STATUSES or "settlement" in self.url


class CheckoutResultClassifier:
    """Maps a navigation URL to a checkout outcome.

    Attributes:
        finish_hosts: Hosts the checkout redirects to once it is done. The
            sandbox merchant is configured to finish on ``example.com``.
    """

    def __init__(self, finish_hosts: tuple[str, ...] = ("example.com",)):
        self.finish_hosts = tuple(h.lower() for h in finish_hosts)

    def _is_finish_host(self, nav: _Navigation) -> bool:
        return any(nav.host == host or nav.host.endswith(f".{host}") for host in self.finish_hosts)

    def _is_settled(self, nav: _Navigation) -> bool:
        return (
            "finish" in nav.segments
            or nav.transaction_status in SETTLED_STATUSES
            or nav.status_code == "200"
            or (nav.status_code == "201" and nav.has_settlement_evidence)
            or (self._is_finish_host(nav) and "error" not in nav.url)
        )

    def _is_pending(self, nav: _Navigation) -> bool:
        return (
            "pending" in nav.segments
            or nav.transaction_status == "pending"
            or (nav.status_code == "201" and not nav.has_settlement_evidence)
        )

    def _is_failed(self, nav: _Navigation) -> bool:
        return (
            "error" in nav.segments
            or nav.transaction_status in FAILED_STATUSES
            or nav.status_code in FAILED_STATUS_CODES
            or (self._is_finish_host(nav) and "error" in nav.url)
        )

    def classify(self, url: str) -> Optional[CheckoutOutcome]:
        """Classify one navigation URL.

        Args:
            url: URL the checkout browser navigated to

        Returns:
            The outcome, or None to keep watching. Never raises; URLs that
            cannot be parsed yield None.
        """
        if not isinstance(url, str) or not url.strip():
            return None
        try:
            nav = _Navigation(url)
        except ValueError:
            return None

        if self._is_settled(nav):
            return CheckoutOutcome.SETTLED
        if self._is_pending(nav):
            return CheckoutOutcome.PENDING
        if self._is_failed(nav):
            return CheckoutOutcome.FAILED
        return None
