"""
RuleKeeper Failure Reporter

Notifies the publisher when an update fails authentication, integrity or
download checks.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .. import __version__
from ..utils.helpers import get_current_timestamp

logger = logging.getLogger(__name__)


class FailureReporter:
    """
    POSTs failure reports to a configured endpoint.

    Reporting problems are logged and never raised.
    """

    def __init__(self, client: httpx.AsyncClient, report_url: str = ""):
        self.client = client
        self.report_url = report_url.strip()
        self.sent = 0
        self.unreported = 0

    @property
    def enabled(self) -> bool:
        return bool(self.report_url)

    async def report(
        self,
        kind: str,
        detail: str,
        manifest_version: Optional[str] = None,
    ) -> bool:
        """
        Send one failure report.

        Returns:
            True if the endpoint accepted it
        """
        if not self.enabled:
            self.unreported += 1
            logger.warning(
                f"Update {kind} was not reported: no failure report URL configured"
            )
            return False

        payload: Dict[str, Any] = {
            "kind": kind,
            "detail": detail,
            "manifest_version": manifest_version,
            "client_version": __version__,
            "reported_at": get_current_timestamp().isoformat(),
        }

        try:
            response = await self.client.post(self.report_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.unreported += 1
            logger.error(f"Failed to report update {kind}: {e}")
            return False

        self.sent += 1
        logger.info(f"Reported update {kind} to {self.report_url}")
        return True
