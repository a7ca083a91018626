"""
JSON-over-HTTP client for a remote MPC cluster.

Requests that fail on connection errors, timeouts, 429 or 5xx are retried with
exponential backoff (1s, 2s, 4s, ...); after the last attempt the call raises
ClusterUnavailable. The cluster posts finalize records back through the API's
`/callbacks/finalize` route.
"""
from __future__ import annotations

import time
from typing import Any, Dict, Optional

import requests

from shroud.errors import ClusterUnavailable
from shroud.ledger.types import ClusterAck, ComputationKind
from shroud.logging_config import get_logger

logger = get_logger("mpc.http_client")

RETRY_STATUS = {429, 500, 502, 503, 504}


class HttpClusterClient:
    def __init__(
        self,
        base_url: str,
        max_retries: int = 3,
        timeout: float = 10.0,
        backoff_base: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: Cluster endpoint, e.g. "http://mxe.local:8080"
            max_retries: Attempts per request (default: 3)
            timeout: Per-request timeout in seconds (default: 10)
            backoff_base: First backoff delay; doubled on each retry
            session: Optional requests.Session (connection reuse, tests)
        """
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(1, int(max_retries))
        self.timeout = timeout
        self.backoff_base = backoff_base
        self.session = session or requests.Session()
        self._public_key: Optional[bytes] = None

    def _request(self, method: str, path: str, description: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        last_error = None

        for attempt in range(self.max_retries):
            try:
                resp = self.session.request(method, url, json=payload, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if resp.status_code < 400:
                    return resp.json() if resp.content else {}
                if resp.status_code not in RETRY_STATUS:
                    raise ClusterUnavailable(
                        f"{description} rejected by cluster (HTTP {resp.status_code}): {resp.text[:500]}"
                    )
                last_error = f"HTTP {resp.status_code}"

            if attempt < self.max_retries - 1:
                wait_time = self.backoff_base * (2 ** attempt)
                logger.warning(
                    f"{description} failed ({last_error}), retrying in {wait_time}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                time.sleep(wait_time)

        raise ClusterUnavailable(
            f"{description} failed after {self.max_retries} attempts. Last error: {last_error}"
        )

    # ---------- ClusterClient ----------
    @property
    def public_key(self) -> bytes:
        if self._public_key is None:
            data = self._request("GET", "/mxe/public-key", "Fetch MXE public key")
            self._public_key = bytes.fromhex(data["public_key"])
        return self._public_key

    def submit_computation(self, kind: ComputationKind, offset: int, arguments: Any) -> ClusterAck:
        kind = ComputationKind(kind)
        data = self._request(
            "POST",
            "/computations",
            f"Submit {kind.value} computation {offset}",
            payload={"kind": kind.value, "offset": str(offset), "arguments": arguments.to_json()},
        )
        return ClusterAck(offset=offset, accepted=bool(data.get("accepted", False)), detail=data.get("detail"))

    def source_circuit(self, kind: ComputationKind, comp_def_offset: int) -> bool:
        kind = ComputationKind(kind)
        data = self._request(
            "POST",
            f"/circuits/{kind.value}/source",
            f"Source {kind.value} circuit",
            payload={"comp_def_offset": comp_def_offset},
        )
        return bool(data.get("acknowledged", False))
