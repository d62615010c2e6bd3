import logging
from typing import Union

from bs4 import BeautifulSoup, ParserRejectedMarkup
from yarl import URL

from pyigd.static import SCHEMES
from pyigd.exceptions import MalformedXMLError, MissingFieldError, ServiceNotFoundError

logger = logging.getLogger(__name__)


class ControlEndpoint:
    def __init__(self, control_url: URL, scheme: str):
        """
        control_url - absolute url accepting control requests
        scheme - service type the control url belongs to
        """

        self._control_url = control_url
        self._scheme = scheme

    @property
    def control_url(self) -> URL:
        return self._control_url

    @property
    def scheme(self) -> str:
        return self._scheme

    def __eq__(self, other) -> bool:
        if not isinstance(other, ControlEndpoint):
            return NotImplemented
        return (self.control_url, self.scheme) == (other.control_url, other.scheme)

    def __hash__(self) -> int:
        return hash((self.control_url, self.scheme))

    def __repr__(self) -> str:
        return f"ControlEndpoint(control_url={self.control_url}, scheme={self.scheme})"


def parse_descriptor(profile: bytes, location: Union[str, URL]) -> ControlEndpoint:
    """
    Finds the control url of the IGD connection service in a device description

    profile - body of the device description document
    location - url the document was fetched from, used to resolve a relative control url

    Raises MalformedXMLError if the document is not a device description,
    ServiceNotFoundError if no known connection service is listed
    """

    try:
        parser = BeautifulSoup(profile, "lxml-xml")
    except ParserRejectedMarkup as e:
        raise MalformedXMLError("Unparsable device description") from e

    root = parser.find()
    if root is None or root.name != "root":
        raise MalformedXMLError("Device description has no <root> element")

    # services can be nested several devices deep, so look everywhere
    service_types = root.find_all("serviceType")
    missing_control_url = False
    for scheme in SCHEMES:
        for service_type in service_types:
            if service_type.get_text().strip() != scheme:
                continue
            control_path = service_type.parent.find("controlURL", recursive=False)
            if control_path is None or not control_path.get_text().strip():
                missing_control_url = True
                continue

            control_url = _resolve(root, location, control_path.get_text().strip())
            logger.debug("Control url for %s is %s", scheme, control_url)
            return ControlEndpoint(control_url, scheme)

    if missing_control_url:
        raise MissingFieldError("controlURL")
    raise ServiceNotFoundError("Device description lists no WANIPConnection or WANPPPConnection service")


def _resolve(root, location, control_path: str) -> URL:
    # URLBase takes precedence over the document location when a device sends one
    base = root.find("URLBase", recursive=False)
    if base is not None and base.get_text().strip():
        base = URL(base.get_text().strip())
    else:
        base = URL(str(location))

    control_url = base.join(URL(control_path))
    if not control_url.is_absolute() or control_url.scheme != "http":
        raise MalformedXMLError(f"Cannot resolve control url {control_path} against {base}")
    return control_url
