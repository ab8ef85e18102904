#!/usr/bin/env python3
"""
APM FLATHUB ADAPTER
-------------------
Remote directory for the Flatpak installation method. Offers the same
search contract as the local index (three-tier ranking, ten results) and
resolves a user-supplied name to a concrete app id.

Author: APM Team
Date: 2026-10-17
"""

import logging
from typing import Any, List, Optional
from urllib.parse import quote

import requests

from apm.core.errors import RemoteUnavailableError
from apm.core.models import PackageRecord
from apm.index.ranking import DEFAULT_LIMIT, rank_by_relevance

logger = logging.getLogger("apm.flathub")

DEFAULT_FLATHUB_URL = "https://flathub.org/api/v1"
DEFAULT_TIMEOUT = 5.0


class FlathubClient:
    """Thin client over the Flathub v1 search and app-detail endpoints."""

    def __init__(self, base_url: str = DEFAULT_FLATHUB_URL, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get_json(self, path: str) -> Any:
        url = f"{self.base_url}/{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise RemoteUnavailableError(f"Flathub request failed for {url}: {e}") from e
        except ValueError as e:
            raise RemoteUnavailableError(f"Flathub returned invalid JSON for {url}: {e}") from e

    def search(self, query: str, limit: int = DEFAULT_LIMIT) -> List[PackageRecord]:
        apps = self._get_json(f"apps/search/{quote(query, safe='')}") or []
        records = [
            PackageRecord(name=app["flatpakAppId"], version="", description=app.get("summary") or "")
            for app in apps
            if isinstance(app, dict) and app.get("flatpakAppId")
        ]
        return rank_by_relevance(records, query, lambda record: record.name, limit)

    def app_exists(self, app_id: str) -> bool:
        try:
            return self._get_json(f"apps/{quote(app_id, safe='')}") is not None
        except RemoteUnavailableError as e:
            response = getattr(e.__cause__, "response", None)
            if response is not None and response.status_code == 404:
                return False
            raise

    def resolve(self, name: str, exact: bool = False) -> Optional[str]:
        """
        Concrete app id for `name`, or None. A name without a dot is a search
        term unless `exact` is set: the best-ranked match is taken.
        """
        app_id = name
        if not exact and "." not in name:
            results = self.search(name)
            if not results:
                logger.info(f"No Flathub results for '{name}'")
                return None
            app_id = results[0].name
            logger.info(f"Resolved '{name}' to Flathub app '{app_id}'")
        return app_id if self.app_exists(app_id) else None
