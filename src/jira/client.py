"""
Jira REST Client

Async JQL search client used by the dashboard producers.

Jira handles:
- Issue search by JQL (paginated)
- Result totals (used as counts without fetching issues)

API: /rest/api/{version}/search
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class JiraError(Exception):
    """Custom exception for Jira API errors."""

    def __init__(self, message: str, status_code: int = None, response: dict = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    retryable_status_codes: tuple = (429, 500, 502, 503, 504)


class JiraClient:
    """
    Async client for the Jira search API.

    Usage:
        client = JiraClient("https://jira.example.com", "user", "password")

        result = await client.search("project = SFAP AND issuetype = Test")
        # result = {"total": 42, "startAt": 0, "maxResults": 50, "issues": [...]}

        await client.close()
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        api_version: str = "2",
        verify_ssl: bool = True,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Jira client.

        Args:
            base_url: Jira server URL (e.g. https://jira.example.com)
            username: Basic auth user
            password: Basic auth password or API token
            api_version: REST API version
            verify_ssl: Verify TLS certificates
            retry_config: Retry configuration (optional)
            timeout: Request timeout in seconds
            transport: Custom transport (tests)
        """
        self.retry_config = retry_config or RetryConfig()

        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/api/{api_version}",
            auth=(username, password),
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(timeout),
            verify=verify_ssl,
            transport=transport,
        )
        self._closed = False

    async def search(
        self,
        jql: str,
        fields: List[str] = None,
        max_results: int = 50,
        start_at: int = 0,
    ) -> Dict[str, Any]:
        """
        Run a JQL search.

        Args:
            jql: JQL query
            fields: Issue fields to return (default: Jira's navigable set)
            max_results: Page size
            start_at: Offset of the first issue

        Returns:
            {
                "total": int,
                "startAt": int,
                "maxResults": int,
                "issues": [{"key": "...", "fields": {...}}, ...]
            }
        """
        if self._closed:
            raise JiraError("Client has been closed")

        payload = {
            "jql": jql,
            "startAt": start_at,
            "maxResults": max_results,
        }
        if fields:
            payload["fields"] = fields

        return await self._request_with_retry("POST", "/search", payload)

    async def count(self, jql: str) -> int:
        """Number of issues matching ``jql`` (no issues fetched)."""
        result = await self.search(jql, fields=["key"], max_results=0)
        return int(result.get("total", 0))

    async def search_all(
        self,
        jql: str,
        fields: List[str] = None,
        page_size: int = 1000,
    ) -> Dict[str, Any]:
        """
        Fetch every issue matching ``jql``, page by page.

        Returns:
            {"total": int, "issues": [...]}
        """
        issues: List[Dict[str, Any]] = []
        start_at = 0
        total = 0

        while True:
            result = await self.search(jql, fields=fields, max_results=page_size, start_at=start_at)
            batch = result.get("issues") or []
            issues.extend(batch)
            total = int(result.get("total", 0))
            start_at += page_size

            logger.debug(f"Fetched {len(issues)}/{total} issues for: {jql}")

            if not batch or start_at >= total or len(issues) >= total:
                break

        return {"total": total, "issues": issues}

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Make request with retry logic."""
        config = self.retry_config
        last_exception = None

        for attempt in range(config.max_retries + 1):
            try:
                if method == "POST":
                    response = await self._client.post(endpoint, json=payload)
                elif method == "GET":
                    response = await self._client.get(endpoint, params=payload)
                else:
                    raise ValueError(f"Unsupported method: {method}")

                if response.status_code >= 400:
                    error_data = _error_body(response)

                    if response.status_code in config.retryable_status_codes:
                        last_exception = JiraError(
                            f"API error: {response.status_code}",
                            status_code=response.status_code,
                            response=error_data,
                        )
                        # Will retry
                    else:
                        messages = error_data.get("errorMessages") or [response.status_code]
                        raise JiraError(
                            f"API error: {messages[0]}",
                            status_code=response.status_code,
                            response=error_data,
                        )
                else:
                    return response.json()

            except httpx.TimeoutException as e:
                last_exception = JiraError(f"Request timed out: {e}")
            except httpx.RequestError as e:
                last_exception = JiraError(f"Request failed: {e}")

            # Retry delay
            if attempt < config.max_retries:
                delay = min(
                    config.initial_delay * (config.exponential_base**attempt),
                    config.max_delay,
                )
                logger.warning(
                    f"Jira request failed, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{config.max_retries + 1})"
                )
                await asyncio.sleep(delay)

        raise last_exception

    async def close(self):
        """Close the HTTP client."""
        if not self._closed:
            await self._client.aclose()
            self._closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {"errorMessages": [response.text[:200]]}
    return body if isinstance(body, dict) else {}
