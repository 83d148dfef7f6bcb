"""
onionrc - torrc generation for Tor clients

Turns a validated set of Tor preferences into torrc text:
- Directive rules for ports, nodes, proxies, relays and logging
- Bridge selection from custom lines or a predefined catalog
- Pluggable transport (obfs3/obfs4/meek_lite) plugin wiring
"""

__version__ = "1.0.0"

from .bridge_list import Bridge, BridgeType, read_custom_bridges, read_default_bridges
from .builder import TorConfigBuilder
from .config_files import TorConfigFiles
from .net import is_local_port_open
from .settings import BuilderPolicy, BuilderVariant, TorSettings

__all__ = [
    "Bridge",
    "BridgeType",
    "read_custom_bridges",
    "read_default_bridges",
    "TorConfigBuilder",
    "TorConfigFiles",
    "is_local_port_open",
    "BuilderPolicy",
    "BuilderVariant",
    "TorSettings",
]
