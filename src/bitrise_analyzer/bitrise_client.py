"""Bitrise REST API client for build data retrieval."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import requests

from .errors import ApiError, AuthenticationError, OutputError

logger = logging.getLogger(__name__)


class BitriseClient:
    """Small client for the Bitrise ``/builds`` listing API."""

    DEFAULT_BASE_URL = "https://api.bitrise.io/v0.1"
    _MAX_RETRIES = 5
    _MAX_BACKOFF_SECONDS = 30

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: int = 30,
    ) -> None:
        """Initialize an authenticated Bitrise API client.

        Args:
            token: Bitrise personal access token.
            base_url: API root, without a trailing ``/builds``.
            timeout_seconds: Per-request timeout in seconds.

        Raises:
            AuthenticationError: If ``token`` is empty.
        """
        if not token or not token.strip():
            raise AuthenticationError("Bitrise access token must not be empty.")

        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

        self._session = requests.Session()
        self._session.headers.update(
            {"Authorization": token.strip(), "Accept": "application/json"}
        )

    def _build_url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _extract_backoff_seconds(self, response: requests.Response, attempt: int) -> int:
        """Compute exponential backoff seconds, honoring Retry-After when available."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                retry_after_seconds = int(retry_after_header)
                return min(self._MAX_BACKOFF_SECONDS, max(1, retry_after_seconds))
            except ValueError:
                pass

        return min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a GET request with retry logic for 429/5xx responses.

        Raises:
            AuthenticationError: If the token is rejected (HTTP 401/403).
            ApiError: If the request repeatedly fails, returns HTTP >= 400,
                or does not return a JSON object.
        """
        url = self._build_url(path)
        query = {key: value for key, value in (params or {}).items() if value is not None}

        last_error: Optional[Exception] = None

        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                response = self._session.get(url, params=query, timeout=self._timeout_seconds)
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self._MAX_RETRIES:
                    raise ApiError(f"Bitrise request failed after retries: GET {url}") from exc
                logger.warning(
                    "Bitrise request failed, retrying",
                    extra={"url": url, "attempt": attempt, "error": str(exc)},
                )
                time.sleep(min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1)))
                continue

            status_code = response.status_code
            is_retryable = status_code == 429 or 500 <= status_code <= 599

            if is_retryable and attempt < self._MAX_RETRIES:
                logger.warning(
                    "Bitrise API returned a retryable status",
                    extra={"url": url, "attempt": attempt, "status_code": status_code},
                )
                time.sleep(self._extract_backoff_seconds(response, attempt))
                continue

            if status_code in (401, 403):
                raise AuthenticationError(
                    f"Bitrise rejected the access token: GET {url} returned {status_code}."
                )

            if status_code >= 400:
                raise ApiError(
                    "Bitrise API request failed: "
                    f"GET {url} returned {status_code} - {response.text}"
                )

            try:
                payload = response.json()
            except ValueError as exc:
                raise ApiError(f"Bitrise API returned invalid JSON: GET {url}") from exc

            if not isinstance(payload, dict):
                raise ApiError(f"Bitrise API returned unexpected payload shape: GET {url}")

            return payload

        raise ApiError(f"Bitrise request failed after retries: GET {url}") from last_error

    def fetch_builds_page(self, next_cursor: Optional[str] = None) -> Dict[str, Any]:
        """Fetch one page of builds across all apps.

        Returns:
            The raw page payload with ``data`` and ``paging`` keys.
        """
        payload = self._get_json("builds", params={"next": next_cursor})
        if not isinstance(payload.get("data", []), list):
            raise ApiError("Bitrise builds page has a non-list 'data' field.")
        return payload

    def iter_build_pages(self) -> Iterator[List[Dict[str, Any]]]:
        """Yield the ``data`` list of each page, following ``paging.next`` cursors."""
        next_cursor: Optional[str] = None
        page_count = 0

        while True:
            payload = self.fetch_builds_page(next_cursor)
            page_items = payload.get("data") or []
            page_count += 1
            logger.info(
                "Fetched builds page",
                extra={"page": page_count, "page_items": len(page_items)},
            )
            yield page_items

            paging = payload.get("paging") or {}
            next_cursor = paging.get("next") if isinstance(paging, dict) else None
            if not next_cursor:
                break

    def fetch_all_builds(self) -> List[Dict[str, Any]]:
        """Return every build record across all pages."""
        builds: List[Dict[str, Any]] = []
        for page_items in self.iter_build_pages():
            builds.extend(page_items)
        return builds

    def fetch_builds_to_file(self, path: Union[str, Path]) -> int:
        """Stream every build record into ``path`` as a JSON array.

        Records are written page by page, so memory use stays bounded by the
        page size. They go to a sibling ``.partial`` file that replaces
        ``path`` only once every page has been written; on failure ``path`` is
        left untouched.

        Returns:
            Number of records written.

        Raises:
            OutputError: If the file cannot be written.
            AuthenticationError: If the token is rejected while paging.
            ApiError: If a page cannot be fetched.
        """
        output_path = Path(path)
        partial_path = output_path.with_name(output_path.name + ".partial")
        total = 0

        try:
            with partial_path.open("w", encoding="utf-8") as handle:
                handle.write("[")
                for page_items in self.iter_build_pages():
                    for item in page_items:
                        handle.write(",\n  " if total else "\n  ")
                        handle.write(json.dumps(item, ensure_ascii=False, sort_keys=True))
                        total += 1
                handle.write("\n]\n" if total else "]\n")
            partial_path.replace(output_path)
        except OSError as exc:
            raise OutputError(f"Cannot write build data to '{output_path}': {exc}") from exc
        finally:
            partial_path.unlink(missing_ok=True)

        logger.info("Wrote build data", extra={"path": str(output_path), "builds": total})
        return total
