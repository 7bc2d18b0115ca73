"""Outbound alert delivery."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """POSTs a JSON payload to ``ALERT_WEBHOOK_URL``.

    Delivery problems are logged and reported as ``False``; they never fail
    the pipeline run.
    """

    def __init__(
        self, url: Optional[str], timeout_secs: float = 10.0, session: Optional[requests.Session] = None
    ) -> None:
        self.url = url
        self.timeout_secs = timeout_secs
        self.session = session or requests.Session()

    def send(self, payload: Dict[str, Any]) -> bool:
        if not self.url:
            logger.warning("Alert: no webhook URL configured, alert not delivered")
            return False
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout_secs)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Alert webhook delivery failed: %s", e)
            return False
        logger.info("Alert: webhook delivered (HTTP %d)", resp.status_code)
        return True
