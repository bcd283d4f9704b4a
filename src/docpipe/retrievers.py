"""Ready-made HTTP retriever.

The document pipeline treats retrievers as opaque ``(uri, options) -> raw``
callables. ``HttpRetriever`` is one such callable for JSON or text APIs. It
receives an ``httpx.AsyncClient`` via constructor injection; whoever builds
the pipeline owns the client lifecycle.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from docpipe import __version__
from docpipe.errors import DocpipeError, ErrorCode

if TYPE_CHECKING:
    from docpipe.config import HttpSettings

log = structlog.get_logger()


def build_http_client(settings: HttpSettings | None = None) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    timeout = settings.timeout if settings is not None else 30.0
    user_agent = (
        settings.user_agent
        if settings is not None and settings.user_agent
        else f"docpipe/{__version__}"
    )
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def _is_json(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


class HttpRetriever:
    """Fetch a uri with GET and return its decoded body.

    ``options`` may be a mapping with ``params`` and ``headers`` entries;
    both are forwarded to the request. JSON responses are decoded, anything
    else is returned as text.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def __call__(self, uri: str, options: Any = None) -> Any:
        params = headers = None
        if isinstance(options, Mapping):
            params = options.get("params")
            headers = options.get("headers")

        try:
            response = await self._client.get(uri, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise DocpipeError(
                code=ErrorCode.FETCH_FAILED,
                message=f"Network error fetching {uri}: {exc}",
                recoverable=True,
            ) from exc

        if not response.is_success:
            if response.status_code == 404:
                raise DocpipeError(
                    code=ErrorCode.NOT_FOUND,
                    message=f"HTTP 404 fetching {uri}",
                    recoverable=False,
                )
            raise DocpipeError(
                code=ErrorCode.FETCH_FAILED,
                message=f"HTTP {response.status_code} fetching {uri}",
                recoverable=True,
            )

        log.info(
            "fetch_complete",
            uri=uri,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return response.json() if _is_json(response) else response.text
