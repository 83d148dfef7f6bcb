"""
Tor settings models with strong typing using Pydantic.

``TorSettings`` is the read-only description of how the Tor daemon should
behave. ``TorConfigBuilder`` only ever reads it; any empty or missing value
simply means the matching torrc directive is left out.
"""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .bridge_list import BridgeType

_SOCKS_PORT_RE = re.compile(r"^(?:[^:\s]+:)?(?:auto|\d{1,5})$", re.IGNORECASE)


class BuilderVariant(str, Enum):
    """
    Rule set used when rendering torrc.

    The two variants disagree on a handful of directives:

    - LEGACY writes explicit ``0`` values for disabled SafeSocks, StrictNodes
      and TestSocks, writes ``UseBridges 0`` when bridges are enabled without
      any bridge source, registers obfs3/obfs4 on one plugin line, and
      shuffles predefined bridges when a cap is given.
    - CURRENT leaves disabled flags out, lists plugins one per line and
      writes every matching predefined bridge in catalog order.
    """
    LEGACY = "legacy"
    CURRENT = "current"


class BuilderPolicy(BaseModel):
    """Variant selection for a builder instance."""

    model_config = ConfigDict(frozen=True)

    variant: BuilderVariant = Field(
        default=BuilderVariant.CURRENT,
        description="Rule set to render with"
    )
    max_bridges: Optional[int] = Field(
        default=None,
        ge=1,
        description="Cap on predefined bridges (legacy variant only)"
    )

    @property
    def is_legacy(self) -> bool:
        return self.variant == BuilderVariant.LEGACY

    @property
    def writes_disabled_flags(self) -> bool:
        return self.is_legacy

    @property
    def combines_obfs_plugins(self) -> bool:
        return self.is_legacy

    @property
    def shuffles_bridges(self) -> bool:
        return self.is_legacy and self.max_bridges is not None


class TorSettings(BaseModel):
    """Desired Tor behaviour, rendered into torrc by the builder."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
    )

    # Network
    disable_network: bool = Field(
        default=True,
        description="Start Tor with networking disabled"
    )
    automap_hosts_on_resolve: bool = False
    run_as_daemon: bool = True

    # Control / auth
    cookie_authentication: bool = Field(
        default=True,
        description="Enable cookie authentication on the control port"
    )

    # Padding
    connection_padding: bool = False
    reduced_connection_padding: bool = True

    # Logging
    debug_logs: bool = Field(
        default=False,
        description="Log debug and info to syslog and disable SafeLogging"
    )

    # Ports
    socks_port: Optional[str] = Field(
        default="9050",
        description="SOCKS port: 'auto', '<port>' or '<host>:<port>'"
    )
    dns_host: Optional[str] = None
    dns_port: Optional[int] = Field(default=5400, ge=0, le=65535)
    http_tunnel_host: Optional[str] = None
    http_tunnel_port: Optional[int] = Field(default=None, ge=0, le=65535)
    transparent_proxy_address: Optional[str] = None
    transparent_proxy_port: Optional[int] = Field(default=None, ge=0, le=65535)
    isolate_dest_addr: bool = Field(
        default=False,
        description="Add IsolateDestAddr to the SOCKS and HTTP tunnel ports"
    )
    open_proxy_on_all_interfaces: bool = False
    virtual_address_network: Optional[str] = None

    # Node selection
    entry_nodes: list[str] = Field(default_factory=list)
    exit_nodes: list[str] = Field(default_factory=list)
    exclude_nodes: list[str] = Field(default_factory=list)
    strict_nodes: bool = False

    # SOCKS behaviour
    safe_socks: bool = False
    test_socks: bool = False

    # Relay
    relay: bool = False
    relay_port: Optional[int] = Field(default=9001, ge=0, le=65535)
    relay_nickname: Optional[str] = None

    # Firewall
    reachable_address: bool = False
    reachable_address_ports: list[str] = Field(
        default_factory=lambda: ["*:80", "*:443"]
    )

    # Bridges
    use_bridges: bool = Field(
        default=False,
        description="Connect through bridges"
    )
    custom_bridges: list[str] = Field(
        default_factory=list,
        description="User supplied bridge lines, preferred over predefined ones"
    )
    bridge_types: list[BridgeType] = Field(
        default_factory=list,
        description="Transports to pick from the predefined bridge catalog"
    )

    # Upstream proxies
    use_socks5: bool = False
    proxy_socks5_host: Optional[str] = None
    proxy_socks5_port: Optional[int] = Field(default=None, ge=0, le=65535)
    proxy_type: Optional[str] = None
    proxy_host: Optional[str] = None
    proxy_port: Optional[int] = Field(default=None, ge=0, le=65535)
    proxy_user: Optional[str] = None
    proxy_password: Optional[str] = None

    # Raw torrc appended at the end
    custom_torrc: Optional[str] = None

    @field_validator('socks_port', mode='before')
    @classmethod
    def coerce_socks_port(cls, v):
        """Allow a bare port number (``socks_port: 9050`` in YAML)."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator('socks_port')
    @classmethod
    def validate_socks_port(cls, v: Optional[str]) -> Optional[str]:
        """Accept 'auto', a port number, or host:port."""
        if not v:
            return v
        if not _SOCKS_PORT_RE.match(v):
            raise ValueError(f"Invalid SOCKS port: {v}")
        port = v.rsplit(":", 1)[-1]
        if port.isdigit() and int(port) > 65535:
            raise ValueError(f"SOCKS port out of range: {v}")
        return v

    @field_validator('bridge_types', mode='before')
    @classmethod
    def normalize_bridge_types(cls, v):
        """Allow bridge types given by lowercase name ('obfs4', 'meek_lite')."""
        if isinstance(v, str):
            v = [item for item in v.split(",") if item.strip()]
        return [item.strip().lower() if isinstance(item, str) else item for item in v]

    @property
    def has_custom_bridges(self) -> bool:
        return any(b.strip() for b in self.custom_bridges)
