"""
PyIGD: NAT port forwarding through UPnP Internet Gateway Devices

Find the gateway with search_gateway() (or await async_search_gateway()),
then use the returned Gateway to query the external ip address and to add,
list and remove port mappings.
"""

import logging

from pyigd.exceptions import (
    IGDError,
    ParseError,
    MalformedXMLError,
    ServiceNotFoundError,
    MissingFieldError,
    SearchError,
    SearchTimeoutError,
    SearchNetworkError,
    InvalidDescriptorError,
    RequestError,
    TransportError,
    ConnectionFailedError,
    TransportTimeoutError,
    UnexpectedStatusError,
    InvalidResponseError,
    FaultError,
    ActionNotSupportedError,
    InvalidArgumentsError,
    UnauthorizedError,
    SpecifiedArrayIndexInvalidError,
    NoSuchEntryInArrayError,
    ConflictInMappingEntryError,
    SamePortValuesRequiredError,
    OnlyPermanentLeasesSupportedError,
    NoPortMapsAvailableError,
)
from pyigd.models import (
    PortMappingProtocol,
    PortMappingRequest,
    PortMappingEntry,
    SearchResponse,
    Gateway,
    AsyncGateway,
)
from pyigd.network import Requester, AsyncRequester, ControlEndpoint, parse_descriptor
from pyigd.network.ssdp import search_gateway, async_search_gateway

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
