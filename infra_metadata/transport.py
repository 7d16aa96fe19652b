"""HTTP fetch primitive for the metadata service."""

from __future__ import annotations

import logging

import requests
from requests.adapters import HTTPAdapter

from .exceptions import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class Transport:
    """Performs single GET requests against the metadata service.

    The underlying session is either injected or created here with a
    connection pool sized for concurrent use by watcher threads and
    lookup calls sharing one client.
    """

    def __init__(
        self,
        base_url: str,
        source_ip: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        pool_maxsize: int = 10,
    ):
        self._base = base_url.rstrip("/")
        self._timeout = timeout
        self._owns_session = session is None
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=1, pool_maxsize=pool_maxsize)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self._session = session
        self._headers = {"Accept": "application/json"}
        if source_ip:
            self._headers["X-Forwarded-For"] = source_ip

    @property
    def base_url(self) -> str:
        return self._base

    def fetch(self, path: str) -> bytes:
        """GET ``path`` and return the raw body. Raises TransportError on failure."""
        url = f"{self._base}{path}"
        logger.debug("GET %s", path, extra={"path": path})

        try:
            resp = self._session.get(url, headers=self._headers, timeout=self._timeout)
        except requests.RequestException as exc:
            raise TransportError(f"Request failed: {exc}", path=path) from exc

        if resp.status_code != 200:
            raise TransportError(
                f"Error {resp.status_code} accessing {path} path",
                path=path,
                status_code=resp.status_code,
            )

        return resp.content

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> Transport:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
