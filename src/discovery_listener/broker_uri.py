"""
Broker address built from listener config.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote

from discovery_listener.config import ListenerConfig

TCP_SCHEMES = frozenset({"tcp", "mqtt"})
TLS_SCHEMES = frozenset({"ssl", "tls", "mqtts"})
WS_SCHEMES = frozenset({"ws"})
WSS_SCHEMES = frozenset({"wss"})


@dataclass(frozen=True, slots=True)
class BrokerURI:
    scheme: str
    host: str
    port: int
    username: str = ""
    password: str = ""

    @property
    def netloc(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def uses_tls(self) -> bool:
        return self.scheme in TLS_SCHEMES or self.scheme in WSS_SCHEMES

    @property
    def transport(self) -> str:
        """paho transport name; unsupported schemes are rejected when connecting."""
        if self.scheme in WS_SCHEMES or self.scheme in WSS_SCHEMES:
            return "websockets"
        return "tcp"

    @property
    def supported(self) -> bool:
        return self.scheme in TCP_SCHEMES | TLS_SCHEMES | WS_SCHEMES | WSS_SCHEMES

    def geturl(self, *, redact: bool = True) -> str:
        if not self.username and not self.password:
            return f"{self.scheme}://{self.netloc}"
        pw = "***" if redact else quote(self.password, safe="")
        return f"{self.scheme}://{quote(self.username, safe='')}:{pw}@{self.netloc}"

    def __str__(self) -> str:
        return self.geturl(redact=True)


def build_broker_uri(cfg: ListenerConfig) -> BrokerURI:
    """
    Build the broker address: lower-cased scheme, host:port, and credentials.

    No validation happens here; bad hosts or schemes surface as connection
    failures.
    """
    return BrokerURI(
        scheme=cfg.scheme.lower(),
        host=cfg.host,
        port=cfg.port,
        username=cfg.username,
        password=cfg.password,
    )
