from __future__ import annotations

import ipaddress
from datetime import timedelta
from enum import Enum
from typing import Dict, List, Tuple, Union

MAX_LEASE_DURATION = 0xFFFFFFFF


class PortMappingProtocol(str, Enum):
    TCP = "TCP"
    UDP = "UDP"

    @classmethod
    def parse(cls, protocol: Union[str, PortMappingProtocol]) -> PortMappingProtocol:
        """
        Accepts a PortMappingProtocol or its name in any case
        """

        if isinstance(protocol, cls):
            return protocol
        try:
            return cls(str(protocol).upper())
        except ValueError:
            raise ValueError("Protocol must be TCP or UDP") from None

    def __str__(self) -> str:
        return self.value


def check_port(port: int, name: str, allow_zero: bool = False) -> int:
    port = int(port)
    low = 0 if allow_zero else 1
    if not low <= port <= 65535:
        raise ValueError(f"{name} must be between {low} and 65535, got {port}")
    return port


class PortMappingRequest:
    def __init__(self,
        protocol: Union[str, PortMappingProtocol],
        external_port: int,
        internal_address: Tuple[str, int],
        lease_duration: Union[int, timedelta] = 0,
        description: str = ""
    ):
        """
        protocol - protocol to allow over port ("TCP" or "UDP")
        external_port - external port on igd to map
        internal_address - (ip, port) on the local network to forward to
        lease_duration - lease in seconds or as a timedelta, 0 means indefinite
        description - description of port forward
        """

        self.protocol = PortMappingProtocol.parse(protocol)
        self.external_port = check_port(external_port, "External port", allow_zero=True)

        internal_ip, internal_port = internal_address
        self.internal_ip = str(ipaddress.IPv4Address(internal_ip))
        self.internal_port = check_port(internal_port, "Internal port")

        if isinstance(lease_duration, timedelta):
            lease_duration = lease_duration.total_seconds()
        try:
            lease_duration = int(lease_duration)
        except (TypeError, ValueError):
            raise ValueError(f"Lease duration must be a number of seconds, got {lease_duration!r}") from None
        if not 0 <= lease_duration <= MAX_LEASE_DURATION:
            raise ValueError(f"Lease duration must be between 0 and {MAX_LEASE_DURATION} seconds")
        self.lease_duration = lease_duration

        self.description = description

    @property
    def internal_address(self) -> Tuple[str, int]:
        return self.internal_ip, self.internal_port

    def arguments(self) -> List[Tuple[str, str]]:
        """
        In-arguments of AddPortMapping and AddAnyPortMapping, in protocol order
        """

        return [
            ("NewRemoteHost", ""),
            ("NewExternalPort", str(self.external_port)),
            ("NewProtocol", self.protocol.value),
            ("NewInternalPort", str(self.internal_port)),
            ("NewInternalClient", self.internal_ip),
            ("NewEnabled", "1"),
            ("NewPortMappingDescription", self.description),
            ("NewLeaseDuration", str(self.lease_duration)),
        ]

    def with_external_port(self, external_port: int) -> PortMappingRequest:
        return PortMappingRequest(
            protocol=self.protocol,
            external_port=external_port,
            internal_address=self.internal_address,
            lease_duration=self.lease_duration,
            description=self.description
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, PortMappingRequest):
            return NotImplemented
        return self.arguments() == other.arguments()

    def __repr__(self) -> str:
        return f"PortMappingRequest(protocol={self.protocol}, external_port={self.external_port}, internal_ip={self.internal_ip}, internal_port={self.internal_port}, lease_duration={self.lease_duration}, description={self.description})"


class PortMappingEntry:
    def __init__(self,
        protocol: PortMappingProtocol,
        external_port: int,
        internal_address: Tuple[str, int],
        enabled: bool = True,
        description: str = "",
        lease_duration: int = 0,
        remote_host: str = ""
    ):
        """
        An existing port mapping as reported by the gateway

        lease_duration - remaining lease in seconds, 0 means indefinite
        remote_host - remote host the mapping is restricted to, "" for any
        """

        self.protocol = protocol
        self.external_port = external_port
        self.internal_address = internal_address
        self.enabled = enabled
        self.description = description
        self.lease_duration = lease_duration
        self.remote_host = remote_host

    @classmethod
    def from_fields(cls, fields: Dict[str, str], **known) -> PortMappingEntry:
        """
        Builds an entry from GetGenericPortMappingEntry or GetSpecificPortMappingEntry out-arguments

        known - values the request already fixed (protocol, external_port, remote_host)
        Raises ValueError if a field does not hold a valid value
        """

        protocol = known.get("protocol", fields.get("NewProtocol"))
        external_port = known.get("external_port", fields.get("NewExternalPort"))
        return cls(
            protocol=PortMappingProtocol.parse(protocol),
            external_port=check_port(external_port, "External port", allow_zero=True),
            internal_address=(
                fields["NewInternalClient"],
                check_port(fields["NewInternalPort"], "Internal port", allow_zero=True)
            ),
            enabled=fields.get("NewEnabled", "1").strip().lower() in ("1", "true", "yes"),
            description=fields.get("NewPortMappingDescription", ""),
            lease_duration=int(fields.get("NewLeaseDuration") or 0),
            remote_host=known.get("remote_host", fields.get("NewRemoteHost", ""))
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, PortMappingEntry):
            return NotImplemented
        return vars(self) == vars(other)

    def __repr__(self) -> str:
        return f"PortMappingEntry(protocol={self.protocol}, external_port={self.external_port}, internal_address={self.internal_address}, enabled={self.enabled}, description={self.description}, lease_duration={self.lease_duration}, remote_host={self.remote_host})"
