"""GraphQL-over-HTTP client for the platform API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from .config import DEFAULT_API_URL
from .errors import ConfigurationError, FetchError

logger = logging.getLogger(__name__)

_METRIC_FIELDS = "id name value type scanRate"

QUERIES = {
    "groups": f"""
        query GetGroups {{
            groups {{
                id
                nodes {{
                    id
                    metrics {{ {_METRIC_FIELDS} }}
                    devices {{
                        id
                        metrics {{ {_METRIC_FIELDS} }}
                    }}
                }}
            }}
        }}
    """,
    "history": """
        query GetHistory(
            $start: DateTime!
            $end: DateTime!
            $metrics: [MetricHistoryEntry!]!
            $interval: String
            $samples: Int
            $raw: Boolean
        ) {
            history(
                start: $start
                end: $end
                metrics: $metrics
                interval: $interval
                samples: $samples
                raw: $raw
            ) {
                groupId
                nodeId
                deviceId
                metricId
                history { value timestamp }
            }
        }
    """,
}

SUBSCRIPTIONS = {
    "metricUpdate": """
        subscription {
            metricUpdate {
                groupId
                nodeId
                deviceId
                metricId
                value
                timestamp
            }
        }
    """,
}


class GraphQLClient:
    """POSTs GraphQL documents with bearer-token auth.

    Pass *session* to share an existing ``aiohttp.ClientSession``; otherwise
    one is created lazily and closed by :meth:`close`.
    """

    def __init__(self, api_key: str | None, url: str = DEFAULT_API_URL, *,
                 session: aiohttp.ClientSession | None = None,
                 timeout: float = 30.0) -> None:
        if not api_key:
            raise ConfigurationError("API key not configured")
        self._api_key = api_key
        self._url = url
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> GraphQLClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def query(self, document: str,
                    variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run *document* and return its ``data`` object.

        Raises ``FetchError`` on HTTP failure, a non-2xx status, an
        undecodable body, or a GraphQL ``errors`` array.
        """
        body = {"query": document, "variables": variables or {}}
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        session = self._get_session()
        try:
            async with session.post(self._url, json=body, headers=headers,
                                    timeout=self._timeout) as resp:
                if resp.status >= 400:
                    raise FetchError(
                        f"API request failed: {resp.status} {resp.reason}",
                        status=resp.status)
                payload = await resp.json(content_type=None)
        except FetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise FetchError(f"API request failed: {e}", cause=e) from e

        if not isinstance(payload, dict):
            raise FetchError("API response is not a JSON object")
        errors = payload.get("errors")
        if errors:
            messages = ", ".join(str(err.get("message", err)) if isinstance(err, dict)
                                 else str(err) for err in errors)
            raise FetchError(f"GraphQL errors: {messages}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise FetchError("API response has no data")
        return data

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
