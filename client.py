import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import httpx

# upstream hosts
SPOT_BASE_URL = "https://api.binance.com/"
FUTURES_BASE_URL = "https://fapi.binance.com/"
FUTURES_PREFIX = "fapi"

REQUEST_TIMEOUT = 30.0


class ProxyError(Exception):
    status_code = 500

    def __init__(self, message: str, url: Optional[httpx.URL] = None):
        super().__init__(message)
        self.url = url


class MalformedTarget(ProxyError):
    status_code = 400


class TransportFailure(ProxyError):
    pass


class UpstreamError(ProxyError):
    def __init__(self, status: str, body: str, url: Optional[httpx.URL] = None):
        super().__init__(f"Request failed: Status={status} Body={body}", url)
        self.status = status
        self.body = body


class ReadFailure(ProxyError):
    pass


@dataclass(frozen=True)
class UpstreamResponse:
    url: httpx.URL
    status_code: int
    content: bytes
    content_type: Optional[str] = None


def select_base_url(path: str) -> str:
    if path.startswith(FUTURES_PREFIX):
        return FUTURES_BASE_URL
    return SPOT_BASE_URL


def _forward_params(params: Iterable[Tuple[str, str]]) -> list:
    # "path" only picks the target, it is never forwarded
    return [(k, v) for k, v in params if k != "path"]


def build_target_url(path: str, params: Iterable[Tuple[str, str]] = ()) -> httpx.URL:
    # path is appended raw, forwarded pairs go after any query already in it
    try:
        url = httpx.URL(select_base_url(path) + path)
        pairs = url.params.multi_items() + _forward_params(params)
        return url.copy_with(params=pairs)
    except httpx.InvalidURL as e:
        raise MalformedTarget(f"Failed to build URL: {e}") from e


def create_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=REQUEST_TIMEOUT)


async def _exchange(http_client: httpx.AsyncClient, url: httpx.URL) -> UpstreamResponse:
    request = http_client.build_request("GET", url)
    try:
        resp = await http_client.send(request, stream=True)
    except httpx.TransportError as e:
        logging.exception("Error occurred while requesting upstream %s", url)
        raise TransportFailure(
            f"Error occurred while requesting upstream: {type(e).__name__}: {e}", url
        ) from e

    try:
        if not resp.is_success:
            status = f"{resp.status_code} {resp.reason_phrase}".strip()
            try:
                await resp.aread()
                body = resp.text
            except httpx.HTTPError:
                body = "Unknown error"
            logging.error("Request failed: Status=%s Body=%s", status, body)
            raise UpstreamError(status, body, url)

        try:
            content = await resp.aread()
        except httpx.HTTPError as e:
            logging.error("Failed to read response body from %s: %s", url, e)
            raise ReadFailure(f"Failed to read response body: {type(e).__name__}: {e}", url) from e
    finally:
        await resp.aclose()

    return UpstreamResponse(
        url=url,
        status_code=resp.status_code,
        content=content,
        content_type=resp.headers.get("content-type"),
    )


async def fetch_upstream(http_client: httpx.AsyncClient, url: httpx.URL) -> UpstreamResponse:
    # single GET, no retries; the deadline covers connect, headers and the whole body
    try:
        return await asyncio.wait_for(_exchange(http_client, url), timeout=REQUEST_TIMEOUT)
    except asyncio.TimeoutError as e:
        logging.error("Request to upstream %s timed out after %ss", url, REQUEST_TIMEOUT)
        raise TransportFailure(
            f"Error occurred while requesting upstream: timed out after {REQUEST_TIMEOUT}s", url
        ) from e
