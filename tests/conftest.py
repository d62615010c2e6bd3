"""Shared fixtures: gateway documents, fake transports and loopback gateways."""

from __future__ import annotations

import asyncio
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import pytest_asyncio
from aiohttp import web

from pyigd.exceptions import ConnectionFailedError
from pyigd.static import SEARCH_TARGET, WANIP_SCHEME

# trimmed from a MiniUPnPd device description; the connection service is two devices deep
DESCRIPTION = b"""<?xml version="1.0" encoding="UTF-8"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
   <specVersion><major>1</major><minor>0</minor></specVersion>
   <device>
      <deviceType>urn:schemas-upnp-org:device:InternetGatewayDevice:1</deviceType>
      <friendlyName>Router</friendlyName>
      <serviceList>
         <service>
            <serviceType>urn:schemas-upnp-org:service:Layer3Forwarding:1</serviceType>
            <serviceId>urn:upnp-org:serviceId:Layer3Forwarding1</serviceId>
            <controlURL>/ctl/L3F</controlURL>
            <eventSubURL>/evt/L3F</eventSubURL>
            <SCPDURL>/L3F.xml</SCPDURL>
         </service>
      </serviceList>
      <deviceList>
         <device>
            <deviceType>urn:schemas-upnp-org:device:WANDevice:1</deviceType>
            <serviceList>
               <service>
                  <serviceType>urn:schemas-upnp-org:service:WANCommonInterfaceConfig:1</serviceType>
                  <serviceId>urn:upnp-org:serviceId:WANCommonIFC1</serviceId>
                  <controlURL>/ctl/CmnIfCfg</controlURL>
                  <eventSubURL>/evt/CmnIfCfg</eventSubURL>
                  <SCPDURL>/WANCfg.xml</SCPDURL>
               </service>
            </serviceList>
            <deviceList>
               <device>
                  <deviceType>urn:schemas-upnp-org:device:WANConnectionDevice:1</deviceType>
                  <serviceList>
                     <service>
                        <serviceType>urn:schemas-upnp-org:service:WANIPConnection:1</serviceType>
                        <serviceId>urn:upnp-org:serviceId:WANIPConn1</serviceId>
                        <controlURL>/ctl/IPConn</controlURL>
                        <eventSubURL>/evt/IPConn</eventSubURL>
                        <SCPDURL>/WANIPCn.xml</SCPDURL>
                     </service>
                  </serviceList>
               </device>
            </deviceList>
         </device>
      </deviceList>
      <presentationURL>http://192.168.0.1/</presentationURL>
   </device>
</root>
"""

# same device without any connection service
DESCRIPTION_WITHOUT_IGD = b"""<?xml version="1.0" encoding="UTF-8"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
   <device>
      <deviceType>urn:schemas-upnp-org:device:MediaServer:1</deviceType>
      <serviceList>
         <service>
            <serviceType>urn:schemas-upnp-org:service:ContentDirectory:1</serviceType>
            <controlURL>/ctl/CD</controlURL>
         </service>
      </serviceList>
   </device>
</root>
"""


def make_soap_response(action: str, scheme: str = WANIP_SCHEME, **fields) -> bytes:
    arguments = "".join(f"<{name}>{value}</{name}>" for name, value in fields.items())
    return (
        '<?xml version="1.0"?>\n'
        '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
        's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
        f'<s:Body><u:{action}Response xmlns:u="{scheme}">{arguments}</u:{action}Response>'
        "</s:Body></s:Envelope>"
    ).encode()


def make_soap_fault(code: int, message: str) -> bytes:
    return (
        '<?xml version="1.0"?>\n'
        '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
        's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
        "<s:Body><s:Fault>"
        "<faultcode>s:Client</faultcode><faultstring>UPnPError</faultstring>"
        '<detail><UPnPError xmlns="urn:schemas-upnp-org:control-1-0">'
        f"<errorCode>{code}</errorCode><errorDescription>{message}</errorDescription>"
        "</UPnPError></detail>"
        "</s:Fault></s:Body></s:Envelope>"
    ).encode()


def make_ssdp_response(location: str, search_target: str = SEARCH_TARGET) -> bytes:
    return (
        "HTTP/1.1 200 OK\r\n"
        "CACHE-CONTROL: max-age=120\r\n"
        f"ST: {search_target}\r\n"
        f"USN: uuid:804e2e56-7bfe-4733-bae0-04bf6d569692::{search_target}\r\n"
        "EXT:\r\n"
        "SERVER: Linux/4.14 UPnP/1.1 MiniUPnPd/2.1\r\n"
        f"LOCATION: {location}\r\n"
        "\r\n"
    ).encode()


class FakeRequester:
    """Serves canned descriptions and control responses, recording every call"""

    def __init__(self, descriptions=None, responses=()):
        self.descriptions = dict(descriptions or {})
        self.responses = list(responses)
        self.fetched = []
        self.sent = []

    def fetch(self, url, timeout=None, deadline=None):
        self.fetched.append(str(url))
        try:
            return self.descriptions[str(url)]
        except KeyError:
            raise ConnectionFailedError(f"Could not reach {url}") from None

    def send(self, url, scheme, action, body, timeout=None):
        self.sent.append((str(url), scheme, action, body))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def actions(self):
        return [action for _, _, action, _ in self.sent]


class FakeAsyncRequester(FakeRequester):
    async def fetch(self, url, timeout=None):
        return super().fetch(url, timeout)

    async def send(self, url, scheme, action, body, timeout=None):
        return super().send(url, scheme, action, body, timeout)


class SSDPResponder(threading.Thread):
    """Answers the first datagram it receives with each of responses"""

    def __init__(self, responses):
        super().__init__(daemon=True)
        self.responses = responses
        self.requests = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(2)
        self.address = self.sock.getsockname()

    def run(self):
        try:
            data, address = self.sock.recvfrom(4096)
        except OSError:
            return
        self.requests.append(data)
        for response in self.responses:
            self.sock.sendto(response, address)

    def close(self):
        self.join(3)
        self.sock.close()


@pytest.fixture
def description():
    return DESCRIPTION


@pytest.fixture
def description_without_igd():
    return DESCRIPTION_WITHOUT_IGD


@pytest.fixture
def soap_response():
    return make_soap_response


@pytest.fixture
def soap_fault():
    return make_soap_fault


@pytest.fixture
def ssdp_response():
    return make_ssdp_response


@pytest.fixture
def fake_requester():
    return FakeRequester


@pytest.fixture
def fake_async_requester():
    return FakeAsyncRequester


@pytest.fixture
def ssdp_responder():
    """Starts loopback responders standing in for gateways on the multicast group"""

    responders = []

    def start(*responses):
        responder = SSDPResponder(list(responses))
        responder.start()
        responders.append(responder)
        return responder

    yield start
    for responder in responders:
        responder.close()


@pytest.fixture
def closed_port():
    """A loopback port nothing listens on"""

    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def http_gateway():
    """
    A blocking HTTP server on loopback acting as the gateway

    Yields (base url, list of (SOAPAction, body) received)
    """

    received = []

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            if self.path != "/rootDesc.xml":
                self._reply(404, b"")
                return
            self._reply(200, DESCRIPTION)

        def do_POST(self):
            body = self.rfile.read(int(self.headers["Content-Length"]))
            received.append((self.headers["SOAPAction"], body))
            if self.path != "/ctl/IPConn":
                self._reply(404, b"")
            elif b"GetExternalIPAddress" in body:
                self._reply(200, make_soap_response("GetExternalIPAddress", NewExternalIPAddress="203.0.113.7"))
            else:
                self._reply(500, make_soap_fault(714, "NoSuchEntryInArray"))

        def _reply(self, status, body):
            self.send_response(status)
            self.send_header("Content-Type", 'text/xml; charset="utf-8"')
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}", received
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def trickling_gateway():
    """
    An HTTP server on loopback that sends the description one byte every 0.3 seconds

    Yields the url of the description
    """

    stop = threading.Event()

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            self.send_response(200)
            self.send_header("Content-Type", 'text/xml; charset="utf-8"')
            self.send_header("Content-Length", str(len(DESCRIPTION)))
            self.end_headers()
            try:
                for i in range(len(DESCRIPTION)):
                    if stop.wait(0.3):
                        return
                    self.wfile.write(DESCRIPTION[i:i + 1])
                    self.wfile.flush()
            except OSError:
                # the client gave up
                return

        def log_message(self, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}/rootDesc.xml"
    finally:
        stop.set()
        server.shutdown()
        server.server_close()


@pytest_asyncio.fixture
async def aiohttp_gateway():
    """
    An aiohttp server on loopback acting as the gateway

    Yields (base url, list of (SOAPAction, body) received)
    """

    received = []

    async def description(request):
        return web.Response(body=DESCRIPTION, content_type="text/xml")

    async def control(request):
        body = await request.read()
        received.append((request.headers.get("SOAPAction"), body))
        if b"GetExternalIPAddress" in body:
            return web.Response(
                body=make_soap_response("GetExternalIPAddress", NewExternalIPAddress="203.0.113.7"),
                content_type="text/xml"
            )
        return web.Response(status=500, body=make_soap_fault(606, "Action not authorized"), content_type="text/xml")

    async def slow(request):
        await asyncio.sleep(1)
        return web.Response(text="late")

    app = web.Application()
    app.router.add_get("/rootDesc.xml", description)
    app.router.add_post("/ctl/IPConn", control)
    app.router.add_get("/slow", slow)

    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]

    runner = web.AppRunner(app)
    await runner.setup()
    await web.SockSite(runner, sock).start()
    try:
        yield f"http://127.0.0.1:{port}", received
    finally:
        await runner.cleanup()
