"""
Transports for descriptor fetches and control requests

Requester blocks the calling thread, AsyncRequester suspends the calling task.
Both open a fresh connection per call and classify failures the same way:
ConnectionFailedError, TransportTimeoutError or UnexpectedStatusError.
"""

import asyncio
import logging
import time
from typing import Dict, Iterable, Union

import aiohttp
import requests
from yarl import URL

from pyigd.static import REQUEST_TIMEOUT
from pyigd.exceptions import ConnectionFailedError, TransportTimeoutError, UnexpectedStatusError

logger = logging.getLogger(__name__)

# UPnP faults are delivered with 500 Internal Server Error
CONTROL_STATUSES = (200, 500)
FETCH_STATUSES = (200,)


def make_headers(scheme: str, action: str) -> Dict[str, str]:
    """
    Generates headers for a control request

    scheme - service type the action belongs to
    action - SOAPAction
    """

    return {
        "SOAPAction": '"{scheme}#{action}"'.format(
            scheme=scheme,
            action=action
        ),
        "Content-Type": 'text/xml; charset="utf-8"'
    }


class Requester:
    def __init__(self, timeout: float = REQUEST_TIMEOUT):
        """
        timeout - seconds to wait on the gateway for each request
        """

        self.timeout = timeout

    def fetch(self, url: Union[str, URL], timeout: float = None, deadline: float = None) -> bytes:
        """
        Returns the body of a GET request, such as a device description

        timeout - seconds to wait on the connection and on each read (default is the requester's timeout)
        deadline - time.monotonic() value by which the whole body must have arrived (default is none)
        """

        logger.debug("Fetching %s", url)
        with self._call(requests.get, url, timeout, stream=deadline is not None) as r:
            self._check(r, url, FETCH_STATUSES)
            if deadline is None:
                return r.content
            return self._read_until(r, url, deadline)

    def send(self, url: Union[str, URL], scheme: str, action: str, body: bytes, timeout: float = None) -> bytes:
        """
        Posts a control request and returns the response body

        url - control url of the gateway
        scheme - service type the action belongs to
        action - SOAPAction
        body - encoded envelope
        """

        logger.debug("Sending %s to %s", action, url)
        r = self._call(requests.post, url, timeout, headers=make_headers(scheme, action), data=body)
        self._check(r, url, CONTROL_STATUSES)
        return r.content

    def _call(self, method, url, timeout, **kwargs) -> requests.Response:
        timeout = self.timeout if timeout is None else timeout
        try:
            return method(str(url), timeout=timeout, **kwargs)
        # ConnectTimeout is also a ConnectionError, so check for timeouts first
        except requests.Timeout as e:
            raise TransportTimeoutError(f"Timed out after {timeout} seconds waiting on {url}") from e
        except requests.RequestException as e:
            raise ConnectionFailedError(f"Could not reach {url}: {e}") from e

    @staticmethod
    def _check(r: requests.Response, url, statuses: Iterable[int]) -> None:
        if r.status_code not in statuses:
            raise UnexpectedStatusError(r.status_code, str(url))

    @staticmethod
    def _read_until(r: requests.Response, url, deadline: float) -> bytes:
        body = bytearray()
        try:
            # byte by byte, a larger chunk blocks until it fills however slowly the server sends
            for chunk in r.iter_content(chunk_size=1):
                body += chunk
                if time.monotonic() >= deadline:
                    raise TransportTimeoutError(f"Deadline passed while reading {url}")
        # iter_content reports read timeouts as ConnectionError
        except requests.RequestException as e:
            raise ConnectionFailedError(f"Lost connection to {url}: {e}") from e
        return bytes(body)


class AsyncRequester:
    def __init__(self, timeout: float = REQUEST_TIMEOUT):
        """
        timeout - seconds to wait on the gateway for each request
        """

        self.timeout = timeout

    async def fetch(self, url: Union[str, URL], timeout: float = None) -> bytes:
        logger.debug("Fetching %s", url)
        return await self._call("GET", url, timeout, FETCH_STATUSES)

    async def send(self, url: Union[str, URL], scheme: str, action: str, body: bytes, timeout: float = None) -> bytes:
        logger.debug("Sending %s to %s", action, url)
        return await self._call(
            "POST",
            url,
            timeout,
            CONTROL_STATUSES,
            headers=make_headers(scheme, action),
            data=body
        )

    async def _call(self, method: str, url, timeout, statuses: Iterable[int], **kwargs) -> bytes:
        timeout = self.timeout if timeout is None else timeout
        try:
            # one session per call, so nothing outlives the request
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
                async with session.request(method, URL(str(url)), **kwargs) as response:
                    body = await response.read()
                    status = response.status
        # ServerTimeoutError is also a ClientError, so check for timeouts first
        except asyncio.TimeoutError as e:
            raise TransportTimeoutError(f"Timed out after {timeout} seconds waiting on {url}") from e
        except aiohttp.ClientError as e:
            raise ConnectionFailedError(f"Could not reach {url}: {e}") from e

        if status not in statuses:
            raise UnexpectedStatusError(status, str(url))
        return body
