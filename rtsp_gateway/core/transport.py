"""
RTSP Transport Header Handling

Parses the Transport header a client sends with SETUP and formats the
header returned once the media plane has chosen its ports.

Only ``client_port`` is interpreted; every other attribute is ignored.
Whether a profile is acceptable is decided by the request dispatcher.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple


class TransportParseError(ValueError):
    """Raised when a Transport header cannot be parsed"""
    pass


@dataclass(frozen=True)
class TransportDescriptor:
    """Client transport request from a SETUP Transport header"""
    profile: str
    delivery_mode: str = ""
    client_ports: Tuple[int, ...] = ()


def is_reliable_profile(profile: str) -> bool:
    return "TCP" in profile.upper()


def header_profile(header_value: str) -> str:
    """Profile token of the first transport in a Transport header"""
    return header_value.split(",", 1)[0].split(";", 1)[0].strip()


def parse_transport(header_value: str) -> TransportDescriptor:
    """
    Parse a Transport header value.

    Example:
        >>> parse_transport("RTP/AVP;unicast;client_port=5000-5001")
        TransportDescriptor(profile='RTP/AVP', delivery_mode='unicast', client_ports=(5000, 5001))

    Args:
        header_value: Raw header value

    Returns:
        TransportDescriptor (client_ports empty when absent)

    Raises:
        TransportParseError: If client_port is not numeric
    """
    # Clients may list several transports separated by commas; use the first
    first = header_value.split(",", 1)[0]
    fields = [f.strip() for f in first.split(";")]

    profile = header_profile(header_value)
    delivery_mode = fields[1] if len(fields) > 1 else ""
    client_ports: Tuple[int, ...] = ()

    for attr in fields[2:]:
        name, _, value = attr.partition("=")
        if name.strip().lower() != "client_port":
            continue
        try:
            client_ports = tuple(int(p) for p in value.split("-") if p.strip())
        except ValueError as e:
            raise TransportParseError(f"Invalid client_port {value!r}") from e

    return TransportDescriptor(
        profile=profile,
        delivery_mode=delivery_mode,
        client_ports=client_ports
    )


def format_ports(ports: Sequence[int]) -> str:
    """Join a port pair as ``5000-5001``"""
    return "-".join(str(p) for p in ports)


def format_transport(
    profile: str,
    client_ports: Sequence[int],
    server_ports: Sequence[int],
    ssrc: int
) -> str:
    """
    Build the Transport header for a successful SETUP response.

    Returns:
        e.g. ``RTP/AVP;unicast;client_port=5000-5001;server_port=20000-20001;ssrc=12345;mode="PLAY"``
    """
    return ";".join([
        profile,
        "unicast",
        f"client_port={format_ports(client_ports)}",
        f"server_port={format_ports(server_ports)}",
        f"ssrc={ssrc}",
        'mode="PLAY"',
    ])
