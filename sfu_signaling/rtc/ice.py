"""
ICE configuration received from the SFU with each offer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from ..signaling.schemas import SignalingConfigModel


@dataclass(frozen=True)
class IceServer:
    urls: List[str] = field(default_factory=list)
    username: Optional[str] = None
    credential: Optional[str] = None

    @property
    def is_turn(self) -> bool:
        return any(url.startswith(("turn:", "turns:")) for url in self.urls)


@dataclass(frozen=True)
class IceConfig:
    """
    Snapshot of the servers and transport policy for one peer engine.

    The snapshot is taken from the offer and applied exactly once, when the
    peer engine is instantiated.
    """

    servers: List[IceServer] = field(default_factory=list)
    transport_policy: str = "all"

    @classmethod
    def from_signaling(cls, config: SignalingConfigModel) -> "IceConfig":
        return cls(
            servers=[
                IceServer(urls=list(server.urls), username=server.username, credential=server.credential)
                for server in config.iceServers
                if server.urls
            ],
            transport_policy=config.iceTransportPolicy or "all",
        )

    @property
    def relay_only(self) -> bool:
        return self.transport_policy == "relay"

    def iter_servers(self) -> Iterator[IceServer]:
        """
        Yield the usable servers; with a relay-only policy only TURN entries.
        """

        for server in self.servers:
            if self.relay_only and not server.is_turn:
                continue
            yield server

    def describe(self) -> Dict[str, object]:
        return {
            "iceServers": [list(server.urls) for server in self.servers],
            "iceTransportPolicy": self.transport_policy,
        }


__all__ = ["IceConfig", "IceServer"]
