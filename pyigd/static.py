SSDP_MULTICAST_IP = "239.255.255.250"
SSDP_MULTICAST_PORT = 1900
SSDP_ADDRESS = (SSDP_MULTICAST_IP, SSDP_MULTICAST_PORT)

SEARCH_TARGET = "urn:schemas-upnp-org:device:InternetGatewayDevice:1"
SSDP_REQUEST = (
    b"M-SEARCH * HTTP/1.1\r\n"
    b"HOST: 239.255.255.250:1900\r\n"
    b"ST: urn:schemas-upnp-org:device:InternetGatewayDevice:1\r\n"
    b'MAN: "ssdp:discover"\r\n'
    b"MX: 3\r\n"
    b"\r\n"
)
# largest datagram read from the discovery socket
MAX_RESPONSE_SIZE = 1500

WANIP_SCHEME = "urn:schemas-upnp-org:service:WANIPConnection:1"
WANPPP_SCHEME = "urn:schemas-upnp-org:service:WANPPPConnection:1"
# control services accepted in a device description, most preferred first
SCHEMES = (WANIP_SCHEME, WANPPP_SCHEME)
SCHEME = WANIP_SCHEME

SOAP_ENVELOPE_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP_ENCODING_NS = "http://schemas.xmlsoap.org/soap/encoding/"

# seconds
SEARCH_TIMEOUT = 3
REQUEST_TIMEOUT = 10

DYNAMIC_PORT_RANGE = (49152, 65535)
MAX_RANDOM_PORT_ATTEMPTS = 20
# most entries read from a gateway's mapping table, one per protocol and port
MAX_PORT_MAPPING_ENTRIES = 2 * 65535
