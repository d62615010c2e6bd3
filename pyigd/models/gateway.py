"""
Gateway handles and the control operations they expose

Each operation is written once, as a generator that yields ActionCalls and is
sent back the decoded out-arguments of each call (or has the RequestError the
call failed with thrown into it). Gateway drives these generators with blocking
requests, AsyncGateway awaits every call instead, so both share one protocol
implementation.
"""

from __future__ import annotations

import ipaddress
import logging
import random
import socket
from typing import Dict, Generator, List, Tuple, TypeVar, Union

from yarl import URL

from pyigd.static import SCHEME, DYNAMIC_PORT_RANGE, MAX_PORT_MAPPING_ENTRIES, MAX_RANDOM_PORT_ATTEMPTS
from pyigd.exceptions import (
    ActionNotSupportedError,
    ConflictInMappingEntryError,
    InvalidDescriptorError,
    InvalidResponseError,
    NoPortMapsAvailableError,
    NoSuchEntryInArrayError,
    ParseError,
    RequestError,
    SamePortValuesRequiredError,
    SpecifiedArrayIndexInvalidError,
)
from pyigd.models.mapping import PortMappingEntry, PortMappingProtocol, PortMappingRequest, check_port
from pyigd.network.igd import ControlEndpoint, parse_descriptor
from pyigd.network.requester import AsyncRequester, Requester
from pyigd.network.soap import ActionCall, decode_response, encode_request

logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Generator[ActionCall, Dict[str, str], T]

ENTRY_FIELDS = (
    "NewInternalPort",
    "NewInternalClient",
    "NewEnabled",
    "NewPortMappingDescription",
    "NewLeaseDuration",
)
GENERIC_ENTRY_FIELDS = ("NewRemoteHost", "NewExternalPort", "NewProtocol") + ENTRY_FIELDS


def random_port() -> int:
    return random.randint(*DYNAMIC_PORT_RANGE)


def get_external_ip() -> Operation[ipaddress.IPv4Address]:
    fields = yield ActionCall("GetExternalIPAddress", required=("NewExternalIPAddress",))

    ip = fields["NewExternalIPAddress"]
    try:
        return ipaddress.IPv4Address(ip)
    except ValueError as e:
        raise InvalidResponseError(f"Gateway returned an invalid external ip {ip!r}") from e


def add_port_mapping(request: PortMappingRequest) -> Operation[None]:
    if request.external_port == 0:
        raise ValueError("External port must be between 1 and 65535, got 0")

    yield ActionCall("AddPortMapping", request.arguments())


def remove_port_mapping(protocol: Union[str, PortMappingProtocol], external_port: int) -> Operation[None]:
    yield ActionCall("DeletePortMapping", _mapping_key(protocol, external_port))


def add_any_port(request: PortMappingRequest) -> Operation[int]:
    # the requested external port is only a hint, AddAnyPortMapping picks the real one
    try:
        fields = yield ActionCall(
            "AddAnyPortMapping",
            request.with_external_port(random_port()).arguments(),
            required=("NewReservedPort",)
        )
    except ActionNotSupportedError:
        logger.debug("AddAnyPortMapping not supported, probing ports with AddPortMapping")
        return (yield from _add_random_port_mapping(request))

    try:
        return check_port(fields["NewReservedPort"], "Reserved port")
    except ValueError as e:
        raise InvalidResponseError(f"Gateway reserved an invalid port {fields['NewReservedPort']!r}") from e


def _add_random_port_mapping(request: PortMappingRequest) -> Operation[int]:
    for _ in range(MAX_RANDOM_PORT_ATTEMPTS):
        candidate = request.with_external_port(random_port())
        try:
            yield ActionCall("AddPortMapping", candidate.arguments())
        except ConflictInMappingEntryError:
            logger.debug("External port %d in use, trying another", candidate.external_port)
            continue
        except SamePortValuesRequiredError:
            same = request.with_external_port(request.internal_port)
            yield ActionCall("AddPortMapping", same.arguments())
            return same.external_port
        return candidate.external_port

    raise NoPortMapsAvailableError(
        728,
        f"No free external port found after {MAX_RANDOM_PORT_ATTEMPTS} attempts"
    )


def get_any_address(request: PortMappingRequest) -> Operation[Tuple[ipaddress.IPv4Address, int]]:
    ip = yield from get_external_ip()
    port = yield from add_any_port(request)
    return ip, port


def get_generic_port_mapping_entry(index: int) -> Operation[PortMappingEntry]:
    fields = yield ActionCall(
        "GetGenericPortMappingEntry",
        [("NewPortMappingIndex", str(int(index)))],
        required=GENERIC_ENTRY_FIELDS
    )
    return _entry(fields)


def get_specific_port_mapping_entry(
    protocol: Union[str, PortMappingProtocol],
    external_port: int
) -> Operation[PortMappingEntry]:
    protocol = PortMappingProtocol.parse(protocol)
    fields = yield ActionCall(
        "GetSpecificPortMappingEntry",
        _mapping_key(protocol, external_port),
        required=ENTRY_FIELDS
    )
    return _entry(fields, protocol=protocol, external_port=external_port, remote_host="")


def get_port_mappings() -> Operation[List[PortMappingEntry]]:
    entries = []
    seen = set()
    index = 0
    # keep going until we get an out of bounds error
    while index < MAX_PORT_MAPPING_ENTRIES:
        try:
            entry = yield from get_generic_port_mapping_entry(index)
        except (SpecifiedArrayIndexInvalidError, NoSuchEntryInArrayError):
            return entries

        # a table holds each (remote host, port, protocol) once, so a repeat means the device ignores the index
        key = (entry.remote_host, entry.external_port, entry.protocol)
        if key in seen:
            logger.info("Gateway repeated the mapping for %s %d at index %d, stopping", entry.protocol, entry.external_port, index)
            return entries
        seen.add(key)

        entries.append(entry)
        index += 1

    logger.info("Stopped reading the mapping table after %d entries", index)
    return entries


def _mapping_key(protocol, external_port) -> List[Tuple[str, str]]:
    return [
        ("NewRemoteHost", ""),
        ("NewExternalPort", str(check_port(external_port, "External port"))),
        ("NewProtocol", PortMappingProtocol.parse(protocol).value),
    ]


def _entry(fields: Dict[str, str], **known) -> PortMappingEntry:
    try:
        return PortMappingEntry.from_fields(fields, **known)
    except ValueError as e:
        raise InvalidResponseError(f"Gateway returned an invalid port mapping entry: {e}") from e


class BaseGateway:
    requester_class = Requester

    def __init__(self,
        addr: Tuple[str, int],
        control_url: str,
        scheme: str = SCHEME,
        requester=None
    ):
        """
        addr - (ip, port) of the gateway's control server
        control_url - path of the control endpoint on that server
        scheme - service type used in control requests
        requester - transport to send requests with (default is a new requester_class)
        """

        self._addr = (str(addr[0]), int(addr[1]))
        self._control_url = control_url
        self._scheme = scheme
        self._url = URL.build(scheme="http", host=self._addr[0], port=self._addr[1]).join(URL(control_url))
        self._requester = requester if requester is not None else self.requester_class()

    @classmethod
    def from_endpoint(cls, endpoint: ControlEndpoint, requester=None):
        url = endpoint.control_url
        return cls((url.host, url.port), url.raw_path_qs, endpoint.scheme, requester)

    @classmethod
    def from_profile(cls, profile: bytes, location: Union[str, URL], requester=None):
        """
        Builds a gateway from a device description document

        Raises InvalidDescriptorError if the document describes no usable IGD
        """

        try:
            endpoint = parse_descriptor(profile, location)
        except ParseError as e:
            raise InvalidDescriptorError(f"Unusable device description at {location}: {e}") from e
        return cls.from_endpoint(endpoint, requester)

    @property
    def addr(self) -> Tuple[str, int]:
        return self._addr

    @property
    def control_url(self) -> str:
        return self._control_url

    @property
    def scheme(self) -> str:
        return self._scheme

    @property
    def url(self) -> URL:
        return self._url

    def local_ip(self) -> str:
        """
        Returns the local ip address that routes to the gateway
        """

        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            # connecting a datagram socket sends nothing, it only picks a route
            s.connect(self.addr)
            return s.getsockname()[0]

    def _encode(self, call: ActionCall) -> bytes:
        return encode_request(call.action, call.arguments, self.scheme)

    def _decode(self, call: ActionCall, body: bytes) -> Dict[str, str]:
        try:
            return decode_response(call.action, body, call.required)
        except ParseError as e:
            raise InvalidResponseError(f"Could not decode {call.action} response: {e}") from e

    def __eq__(self, other) -> bool:
        if not isinstance(other, BaseGateway):
            return NotImplemented
        return (self.addr, self.control_url) == (other.addr, other.control_url)

    def __hash__(self) -> int:
        return hash((self.addr, self.control_url))

    def __str__(self) -> str:
        return str(self.url)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(addr={self.addr[0]}:{self.addr[1]}, control_url={self.control_url}, scheme={self.scheme})"


class Gateway(BaseGateway):
    requester_class = Requester

    @classmethod
    def from_location(cls,
        location: Union[str, URL],
        requester: Requester = None,
        timeout: float = None,
        deadline: float = None
    ) -> Gateway:
        """
        Fetches a device description and builds a gateway from it

        location - url of the device description
        timeout - seconds to wait on each read of the description (default is the requester's timeout)
        deadline - time.monotonic() value by which the whole description must have arrived
        """

        requester = requester if requester is not None else cls.requester_class()
        profile = requester.fetch(location, timeout=timeout, deadline=deadline)
        return cls.from_profile(profile, location, requester)

    def get_external_ip(self) -> ipaddress.IPv4Address:
        """
        Returns the external ip address
        """

        return self._run(get_external_ip())

    def add_port_mapping(self, request: PortMappingRequest) -> None:
        """
        Maps request.external_port to request.internal_address
        Adding an existing mapping again is left to the gateway to accept or refuse
        """

        return self._run(add_port_mapping(request))

    def add_port(self,
        protocol: Union[str, PortMappingProtocol],
        external_port: int,
        internal_address: Tuple[str, int],
        lease_duration: int = 0,
        description: str = ""
    ) -> None:
        """
        Same as add_port_mapping, without building the PortMappingRequest first
        """

        return self.add_port_mapping(
            PortMappingRequest(protocol, external_port, internal_address, lease_duration, description)
        )

    def remove_port_mapping(self, protocol: Union[str, PortMappingProtocol], external_port: int) -> None:
        """
        Removes the mapping of external_port for protocol
        Raises NoSuchEntryInArrayError if the gateway has no such mapping
        """

        return self._run(remove_port_mapping(protocol, external_port))

    def add_any_port(self,
        protocol: Union[str, PortMappingProtocol],
        internal_address: Tuple[str, int],
        lease_duration: int = 0,
        description: str = ""
    ) -> int:
        """
        Maps any free external port to internal_address
        Returns the external port the gateway picked
        """

        request = PortMappingRequest(protocol, 0, internal_address, lease_duration, description)
        return self._run(add_any_port(request))

    def get_any_address(self,
        protocol: Union[str, PortMappingProtocol],
        internal_address: Tuple[str, int],
        lease_duration: int = 0,
        description: str = ""
    ) -> Tuple[ipaddress.IPv4Address, int]:
        """
        Returns (external ip, external port) of a new mapping to internal_address
        """

        request = PortMappingRequest(protocol, 0, internal_address, lease_duration, description)
        return self._run(get_any_address(request))

    def get_generic_port_mapping_entry(self, index: int) -> PortMappingEntry:
        """
        Get a single mapping given the index in the IGD's table of mappings
        Raises SpecifiedArrayIndexInvalidError past the end of the table
        """

        return self._run(get_generic_port_mapping_entry(index))

    def get_specific_port_mapping_entry(self,
        protocol: Union[str, PortMappingProtocol],
        external_port: int
    ) -> PortMappingEntry:
        return self._run(get_specific_port_mapping_entry(protocol, external_port))

    def get_port_mappings(self) -> List[PortMappingEntry]:
        """
        Returns list of all active mappings, in table order
        """

        return self._run(get_port_mappings())

    def _perform(self, call: ActionCall) -> Dict[str, str]:
        body = self._requester.send(self.url, self.scheme, call.action, self._encode(call))
        return self._decode(call, body)

    def _run(self, operation: Operation[T]) -> T:
        try:
            call = next(operation)
            while True:
                try:
                    fields = self._perform(call)
                except RequestError as e:
                    call = operation.throw(e)
                else:
                    call = operation.send(fields)
        except StopIteration as stop:
            return stop.value


class AsyncGateway(BaseGateway):
    requester_class = AsyncRequester

    @classmethod
    async def from_location(
        cls,
        location: Union[str, URL],
        requester: AsyncRequester = None,
        timeout: float = None
    ) -> AsyncGateway:
        requester = requester if requester is not None else cls.requester_class()
        profile = await requester.fetch(location, timeout=timeout)
        return cls.from_profile(profile, location, requester)

    async def get_external_ip(self) -> ipaddress.IPv4Address:
        return await self._run(get_external_ip())

    async def add_port_mapping(self, request: PortMappingRequest) -> None:
        return await self._run(add_port_mapping(request))

    async def add_port(self,
        protocol: Union[str, PortMappingProtocol],
        external_port: int,
        internal_address: Tuple[str, int],
        lease_duration: int = 0,
        description: str = ""
    ) -> None:
        return await self.add_port_mapping(
            PortMappingRequest(protocol, external_port, internal_address, lease_duration, description)
        )

    async def remove_port_mapping(self, protocol: Union[str, PortMappingProtocol], external_port: int) -> None:
        return await self._run(remove_port_mapping(protocol, external_port))

    async def add_any_port(self,
        protocol: Union[str, PortMappingProtocol],
        internal_address: Tuple[str, int],
        lease_duration: int = 0,
        description: str = ""
    ) -> int:
        request = PortMappingRequest(protocol, 0, internal_address, lease_duration, description)
        return await self._run(add_any_port(request))

    async def get_any_address(self,
        protocol: Union[str, PortMappingProtocol],
        internal_address: Tuple[str, int],
        lease_duration: int = 0,
        description: str = ""
    ) -> Tuple[ipaddress.IPv4Address, int]:
        request = PortMappingRequest(protocol, 0, internal_address, lease_duration, description)
        return await self._run(get_any_address(request))

    async def get_generic_port_mapping_entry(self, index: int) -> PortMappingEntry:
        return await self._run(get_generic_port_mapping_entry(index))

    async def get_specific_port_mapping_entry(self,
        protocol: Union[str, PortMappingProtocol],
        external_port: int
    ) -> PortMappingEntry:
        return await self._run(get_specific_port_mapping_entry(protocol, external_port))

    async def get_port_mappings(self) -> List[PortMappingEntry]:
        return await self._run(get_port_mappings())

    async def _perform(self, call: ActionCall) -> Dict[str, str]:
        body = await self._requester.send(self.url, self.scheme, call.action, self._encode(call))
        return self._decode(call, body)

    async def _run(self, operation: Operation[T]) -> T:
        try:
            call = next(operation)
            while True:
                try:
                    fields = await self._perform(call)
                except RequestError as e:
                    call = operation.throw(e)
                else:
                    call = operation.send(fields)
        except StopIteration as stop:
            return stop.value
