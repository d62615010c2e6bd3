"""
SOAP envelope codec for IGD control calls

Requests are rendered from a fixed template so identical calls always produce
identical bytes. Responses are parsed with BeautifulSoup's lxml-xml builder and
matched by local element name, since gateways disagree about namespace prefixes.
"""

import logging
from typing import Dict, Iterable, List, Tuple
from xml.sax.saxutils import escape

from bs4 import BeautifulSoup, ParserRejectedMarkup

from pyigd.static import SCHEME, SOAP_ENCODING_NS, SOAP_ENVELOPE_NS
from pyigd.exceptions import MalformedXMLError, MissingFieldError, fault_error

logger = logging.getLogger(__name__)

ENVELOPE = (
    '<?xml version="1.0"?>\n'
    '<s:Envelope s:encodingStyle="{encoding}" xmlns:s="{envelope}">\n'
    "<s:Body>\n"
    '<u:{action} xmlns:u="{scheme}">\n'
    "{arguments}"
    "</u:{action}>\n"
    "</s:Body>\n"
    "</s:Envelope>\n"
)
ARGUMENT = "<{name}>{value}</{name}>\n"


class ActionCall:
    def __init__(
        self,
        action: str,
        arguments: Iterable[Tuple[str, object]] = (),
        required: Iterable[str] = ()
    ):
        """
        action - SOAP action name, e.g. "AddPortMapping"
        arguments - (name, value) in-arguments, in the order the service defines them
        required - out-arguments the response must carry
        """

        self.action = action
        self.arguments = list(arguments)
        self.required = tuple(required)

    def __repr__(self) -> str:
        return f"ActionCall(action={self.action}, arguments={self.arguments}, required={self.required})"


def encode_request(action: str, arguments: List[Tuple[str, object]], scheme: str = SCHEME) -> bytes:
    """
    Generates the envelope for a control request

    action - SOAP action name
    arguments - ordered (name, value) pairs, sent verbatim and in order
    scheme - service type the action belongs to
    """

    content = "".join(
        ARGUMENT.format(name=name, value=escape(str(value)))
        for name, value in arguments
    )
    return ENVELOPE.format(
        encoding=SOAP_ENCODING_NS,
        envelope=SOAP_ENVELOPE_NS,
        action=action,
        scheme=scheme,
        arguments=content
    ).encode("utf-8")


def decode_response(action: str, body: bytes, required: Iterable[str] = ()) -> Dict[str, str]:
    """
    Parses the envelope returned for a control request

    action - SOAP action name the request was made with
    body - raw response body
    required - out-arguments that must be present

    Returns the out-arguments of the <action>Response element by name, in document order
    Raises the matching FaultError if the gateway answered with a fault
    Extra out-arguments are kept, missing required ones raise MissingFieldError
    """

    try:
        parser = BeautifulSoup(body, "lxml-xml")
    except ParserRejectedMarkup as e:
        raise MalformedXMLError(f"Unparsable {action} response") from e

    envelope_body = parser.find("Body")
    if envelope_body is None:
        raise MalformedXMLError(f"No SOAP body in {action} response")

    fault = envelope_body.find("Fault")
    if fault is not None:
        raise _fault(action, fault)

    response = envelope_body.find(f"{action}Response")
    if response is None:
        raise MissingFieldError(f"{action}Response", action)

    fields = {}
    for child in response.find_all(recursive=False):
        fields[child.name] = child.get_text().strip()
    for name in required:
        if name not in fields:
            raise MissingFieldError(name, action)

    logger.debug("%s returned %s", action, fields)
    return fields


def _fault(action, fault):
    code = fault.find("errorCode")
    if code is None:
        raise MissingFieldError("errorCode", action)
    try:
        code = int(code.get_text().strip())
    except ValueError as e:
        raise MalformedXMLError(f"Non-numeric errorCode in {action} fault") from e

    description = fault.find("errorDescription")
    if description is None:
        # fall back to the generic SOAP fault text
        description = fault.find("faultstring")
    message = description.get_text().strip() if description is not None else ""

    logger.debug("%s failed with UPnP error %d: %s", action, code, message)
    return fault_error(code, message)
