from pyigd.models.mapping import PortMappingProtocol, PortMappingRequest, PortMappingEntry
from pyigd.models.response import SearchResponse
from pyigd.models.gateway import Gateway, AsyncGateway
