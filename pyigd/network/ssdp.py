"""
SSDP discovery of Internet Gateway Devices

A single M-SEARCH is multicast and responses are read until the first one whose
device description names a usable connection service, or until the timeout.
Responses for other search targets, malformed datagrams and devices whose
description cannot be fetched or used are skipped, and listening continues.
Nothing is retried: call again for another search.
"""

import asyncio
import logging
import re
import socket
import time
from typing import Optional, Tuple

from yarl import URL

from pyigd.static import MAX_RESPONSE_SIZE, SEARCH_TARGET, SEARCH_TIMEOUT, SSDP_ADDRESS, SSDP_REQUEST
from pyigd.exceptions import InvalidDescriptorError, SearchNetworkError, SearchTimeoutError, TransportError
from pyigd.models.gateway import AsyncGateway, Gateway
from pyigd.models.response import SearchResponse
from pyigd.network.requester import AsyncRequester, Requester

logger = logging.getLogger(__name__)

HEADER = re.compile(r"^(?P<name>[^:\r\n]+):[ \t]*(?P<value>.*?)[ \t]*\r?$", re.MULTILINE)


def parse_search_response(data: bytes, address: Tuple[str, int]) -> Optional[SearchResponse]:
    """
    data - datagram received on the search socket
    address - (ip, port) it came from

    Returns a SearchResponse if the datagram answers the IGD search, None otherwise
    """

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug("Ignoring undecodable response from %s", address)
        return None

    status, _, rest = text.partition("\n")
    if status.split()[:2] not in (["HTTP/1.1", "200"], ["HTTP/1.0", "200"]):
        logger.debug("Ignoring non-200 response from %s: %r", address, status.strip())
        return None

    # split into name, value pairs; header names are case insensitive
    headers = {name.strip().upper(): value for name, value in HEADER.findall(rest)}

    search_target = headers.get("ST")
    if search_target != SEARCH_TARGET:
        logger.debug("Ignoring response from %s for search target %s", address, search_target)
        return None

    try:
        location = URL(headers.get("LOCATION", ""))
    except ValueError:
        location = None
    if location is None or not location.is_absolute() or location.scheme != "http":
        logger.debug("Ignoring response from %s without a usable LOCATION", address)
        return None

    return SearchResponse(
        address=address,
        location=location,
        search_target=search_target,
        server=headers.get("SERVER"),
        usn=headers.get("USN")
    )


def open_search_socket(bind_address: Optional[str]) -> socket.socket:
    """
    Returns a datagram socket bound to bind_address (default is all interfaces)
    """

    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as e:
        raise SearchNetworkError(f"Could not open search socket: {e}") from e

    try:
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
        if bind_address:
            # send the search out of the chosen interface too
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(bind_address))
        sock.bind((bind_address or "0.0.0.0", 0))
    except OSError as e:
        sock.close()
        raise SearchNetworkError(f"Could not bind search socket to {bind_address}: {e}") from e
    return sock


def search_gateway(
    bind_address: Optional[str] = None,
    timeout: float = SEARCH_TIMEOUT,
    broadcast_address: Tuple[str, int] = SSDP_ADDRESS,
    requester: Requester = None
) -> Gateway:
    """
    Finds the gateway, blocking until one answers or timeout elapses

    bind_address - local interface ip to search from (default is all interfaces)
    timeout - seconds to listen for responses (default is 3 seconds)
    broadcast_address - where to send the search (default is the SSDP multicast group)
    requester - transport for the description fetch and for the returned gateway

    Raises SearchTimeoutError if no usable gateway answered in time,
    SearchNetworkError if the socket fails
    """

    requester = requester if requester is not None else Requester()
    deadline = time.monotonic() + timeout

    with open_search_socket(bind_address) as sock:
        logger.debug("Sending M-SEARCH to %s:%d", *broadcast_address)
        try:
            sock.sendto(SSDP_REQUEST, broadcast_address)
        except OSError as e:
            raise SearchNetworkError(f"Could not send search to {broadcast_address}: {e}") from e

        seen = set()
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise SearchTimeoutError(timeout)
            sock.settimeout(remaining)

            try:
                data, address = sock.recvfrom(MAX_RESPONSE_SIZE)
            except socket.timeout:
                raise SearchTimeoutError(timeout) from None
            except OSError as e:
                raise SearchNetworkError(f"Search socket failed: {e}") from e

            response = _candidate(data, address, seen)
            if response is None:
                continue

            remaining = max(deadline - time.monotonic(), 0.001)
            try:
                gateway = Gateway.from_location(
                    response.location,
                    requester=requester,
                    timeout=remaining,
                    deadline=deadline
                )
            except (TransportError, InvalidDescriptorError) as e:
                logger.info("Discarding %s: %s", response.location, e)
                continue

            if time.monotonic() > deadline:
                logger.info("Discarding %s: description arrived after the deadline", response.location)
                raise SearchTimeoutError(timeout)

            logger.info("Found gateway %s", gateway)
            return gateway


class SearchProtocol(asyncio.DatagramProtocol):
    def __init__(self):
        # holds (data, address) tuples, or the OSError the socket reported
        self.queue = asyncio.Queue()

    def datagram_received(self, data, addr):
        self.queue.put_nowait((data, addr))

    def error_received(self, exc):
        self.queue.put_nowait(exc)


async def async_search_gateway(
    bind_address: Optional[str] = None,
    timeout: float = SEARCH_TIMEOUT,
    broadcast_address: Tuple[str, int] = SSDP_ADDRESS,
    requester: AsyncRequester = None
) -> AsyncGateway:
    """
    Same as search_gateway, suspending instead of blocking
    Cancelling the search closes its socket
    """

    requester = requester if requester is not None else AsyncRequester()
    loop = asyncio.get_running_loop()

    sock = open_search_socket(bind_address)
    sock.setblocking(False)
    try:
        transport, protocol = await loop.create_datagram_endpoint(SearchProtocol, sock=sock)
    except OSError as e:
        sock.close()
        raise SearchNetworkError(f"Could not listen for search responses: {e}") from e
    except BaseException:
        # cancelled before a transport took ownership of the socket
        sock.close()
        raise

    try:
        logger.debug("Sending M-SEARCH to %s:%d", *broadcast_address)
        transport.sendto(SSDP_REQUEST, broadcast_address)
        return await asyncio.wait_for(_receive(protocol, requester), timeout)
    except asyncio.TimeoutError:
        raise SearchTimeoutError(timeout) from None
    finally:
        transport.close()


async def _receive(protocol: SearchProtocol, requester: AsyncRequester) -> AsyncGateway:
    seen = set()
    while True:
        item = await protocol.queue.get()
        if isinstance(item, Exception):
            raise SearchNetworkError(f"Search socket failed: {item}") from item

        response = _candidate(*item, seen)
        if response is None:
            continue

        try:
            gateway = await AsyncGateway.from_location(response.location, requester=requester)
        except (TransportError, InvalidDescriptorError) as e:
            logger.info("Discarding %s: %s", response.location, e)
            continue

        logger.info("Found gateway %s", gateway)
        return gateway


def _candidate(data: bytes, address, seen: set) -> Optional[SearchResponse]:
    response = parse_search_response(data, address)
    if response is None:
        return None
    # devices often answer more than once, only fetch each description once
    if response.location in seen:
        return None
    seen.add(response.location)

    logger.debug("IGD at %s advertises %s", address, response.location)
    return response
