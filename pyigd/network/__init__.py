from pyigd.network.soap import ActionCall, encode_request, decode_response
from pyigd.network.igd import ControlEndpoint, parse_descriptor
from pyigd.network.requester import Requester, AsyncRequester
