from typing import Tuple

from yarl import URL


class SearchResponse:
    def __init__(self,
        address: Tuple[str, int],
        location: URL,
        search_target: str,
        server: str = None,
        usn: str = None
    ):
        """
        address - (ip, port) the discovery response was sent from
        location - url of the device description document
        search_target - ST header of the response
        server - SERVER header, if any
        usn - unique service name, if any
        """

        self.address = address
        self.location = location
        self.search_target = search_target
        self.server = server
        self.usn = usn

    def __repr__(self) -> str:
        return f"SearchResponse(address={self.address}, location={self.location}, search_target={self.search_target}, server={self.server}, usn={self.usn})"
