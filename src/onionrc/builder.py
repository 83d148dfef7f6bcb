"""
torrc synthesis for onionrc.

``TorConfigBuilder`` accumulates torrc directives from ``TorSettings``.
Every concern comes in two layers:

- a primitive (``socks_port``, ``bridge``, ...) that writes a directive
  from explicit arguments, and
- a policy (``socks_port_from_settings``, ...) that reads the settings and
  calls the primitive when it applies.

``update_tor_config()`` runs every policy in a fixed order. A builder owns a
single mutable buffer and must not be shared between threads.
"""

import io
import os
import random
import time
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, List, Optional, Union

import structlog

from .bridge_list import (
    Bridge,
    BridgeType,
    filter_bridges,
    read_custom_bridges,
    read_default_bridges,
)
from .config_files import TorConfigFiles
from .net import is_local_port_open
from .settings import BuilderPolicy, TorSettings

logger = structlog.get_logger(__name__)

# A bridge list: a file path, a callable returning a fresh binary stream,
# or an open binary stream
BridgeSource = Union[str, os.PathLike, Callable[[], BinaryIO], BinaryIO]

ISOLATE_DEST_ADDR = "IsolateDestAddr"


def _as_opener(source: Optional[BridgeSource]):
    """
    Normalize a bridge source to a path or a zero-argument opener.

    An open stream is read once, here, and replayed from memory on every
    run. Closing it stays with the caller.
    """
    if source is None or callable(source):
        return source
    if hasattr(source, "read"):
        data = source.read()
        return lambda: io.BytesIO(data)
    if isinstance(source, (str, os.PathLike)):
        return source
    raise TypeError(f"Unsupported bridge source: {type(source).__name__}")


class TorConfigBuilder:
    """
    Builds torrc text from Tor settings.

    Args:
        settings: Desired Tor behaviour
        files: Locations of files referenced from torrc
        bridges: Predefined bridge catalog (path, stream opener or stream)
        policy: Variant rules to render with (defaults to the current rules)
        custom_bridges: User bridge list, one bridge line per row, merged
            with ``settings.custom_bridges``
    """

    def __init__(
        self,
        settings: TorSettings,
        files: Optional[TorConfigFiles] = None,
        bridges: Optional[BridgeSource] = None,
        policy: Optional[BuilderPolicy] = None,
        custom_bridges: Optional[BridgeSource] = None,
    ):
        self.settings = settings
        self.files = files or TorConfigFiles()
        self.policy = policy or BuilderPolicy()
        self._bridge_source = _as_opener(bridges)
        self._custom_bridge_source = _as_opener(custom_bridges)
        self._lines: List[str] = []

        # Order matters only for readability of the output, except that the
        # custom torrc block goes last so user text wins over generated lines.
        self._policies: List[Callable[[], "TorConfigBuilder"]] = [
            self.disable_network_from_settings,
            self.run_as_daemon_from_settings,
            self.automap_hosts_on_resolve_from_settings,
            self.cookie_authentication_from_settings,
            self.control_port_write_to_file_from_config,
            self.connection_padding_from_settings,
            self.reduced_connection_padding_from_settings,
            self.debug_logs_from_settings,
            self.safe_socks_from_settings,
            self.test_socks_from_settings,
            self.strict_nodes_from_settings,
            self.nodes_from_settings,
            self.socks_port_from_settings,
            self.proxy_on_all_interfaces_from_settings,
            self.dns_port_from_settings,
            self.http_tunnel_port_from_settings,
            self.trans_port_from_settings,
            self.virtual_address_network_from_settings,
            self.geoip_files_from_config,
            self.reachable_addresses_from_settings,
            self.proxy_socks5_from_settings,
            self.proxy_with_authentication_from_settings,
            self.non_exit_relay_from_settings,
            self.use_bridges_from_settings,
            self.custom_bridges_from_settings,
            self.default_bridges_from_settings,
            self.pluggable_transports_from_settings,
            self.torrc_custom_from_settings,
        ]

    # ------------------------------------------------------------------
    # Buffer
    # ------------------------------------------------------------------

    def update_tor_config(self) -> "TorConfigBuilder":
        """
        Apply every settings-derived directive.

        Raises:
            FileNotFoundError: Pluggable transport client is missing
            PermissionError: Pluggable transport client is not executable
        """
        for policy in self._policies:
            policy()
        logger.debug("Rendered torrc", lines=len(self._lines), variant=self.policy.variant.value)
        return self

    def as_string(self) -> str:
        return "".join(f"{line}\n" for line in self._lines)

    @property
    def lines(self) -> tuple:
        return tuple(self._lines)

    def reset(self) -> None:
        self._lines = []

    def write_line(self, *values: Optional[str]) -> "TorConfigBuilder":
        """Write a space separated line. Nothing is written if any value is missing."""
        if not values or any(v is None or v == "" for v in values):
            return self
        self._lines.append(" ".join(str(v) for v in values))
        return self

    def write_nodes_line(self, name: str, values: Iterable[str]) -> "TorConfigBuilder":
        """Write ``name a,b,c``; skipped for an empty collection."""
        values = [v for v in (values or []) if v]
        if name and values:
            self._lines.append(f"{name} {','.join(values)}")
        return self

    def write_true_property(self, name: str) -> "TorConfigBuilder":
        return self.write_line(name, "1")

    def write_false_property(self, name: str) -> "TorConfigBuilder":
        return self.write_line(name, "0")

    def write_address(
        self,
        field_name: str,
        address: Optional[str],
        port: Optional[int],
        flags: Optional[str],
    ) -> "TorConfigBuilder":
        """
        Write an address directive: ``NAME [host:]port|auto [flags]``.

        Nothing is written when both address and port are missing. A missing
        port with an address present becomes ``auto``.

        Raises:
            ValueError: If port is negative
        """
        if not address and port is None:
            return self
        if port is not None and port < 0:
            raise ValueError(f"Port value: {field_name}, {port}")

        value = f"{address}:" if address else ""
        value += str(port) if port is not None else "auto"

        line = f"{field_name} {value}"
        if flags:
            line += f" {flags}"
        self._lines.append(line)
        return self

    # ------------------------------------------------------------------
    # Daemon behaviour
    # ------------------------------------------------------------------

    def automap_hosts_on_resolve(self) -> "TorConfigBuilder":
        return self.write_true_property("AutomapHostsOnResolve")

    def automap_hosts_on_resolve_from_settings(self) -> "TorConfigBuilder":
        return self.automap_hosts_on_resolve() if self.settings.automap_hosts_on_resolve else self

    def connection_padding(self) -> "TorConfigBuilder":
        return self.write_true_property("ConnectionPadding")

    def connection_padding_from_settings(self) -> "TorConfigBuilder":
        return self.connection_padding() if self.settings.connection_padding else self

    def reduced_connection_padding(self) -> "TorConfigBuilder":
        return self.write_true_property("ReducedConnectionPadding")

    def reduced_connection_padding_from_settings(self) -> "TorConfigBuilder":
        return self.reduced_connection_padding() if self.settings.reduced_connection_padding else self

    def debug_logs(self) -> "TorConfigBuilder":
        self.write_line("Log debug syslog")
        self.write_line("Log info syslog")
        return self.write_false_property("SafeLogging")

    def debug_logs_from_settings(self) -> "TorConfigBuilder":
        return self.debug_logs() if self.settings.debug_logs else self

    def disable_network(self) -> "TorConfigBuilder":
        return self.write_true_property("DisableNetwork")

    def disable_network_from_settings(self) -> "TorConfigBuilder":
        return self.disable_network() if self.settings.disable_network else self

    def run_as_daemon(self) -> "TorConfigBuilder":
        return self.write_true_property("RunAsDaemon")

    def run_as_daemon_from_settings(self) -> "TorConfigBuilder":
        return self.run_as_daemon() if self.settings.run_as_daemon else self

    def safe_socks_enable(self) -> "TorConfigBuilder":
        return self.write_true_property("SafeSocks")

    def safe_socks_disable(self) -> "TorConfigBuilder":
        return self.write_false_property("SafeSocks")

    def safe_socks_from_settings(self) -> "TorConfigBuilder":
        if self.settings.safe_socks:
            return self.safe_socks_enable()
        return self.safe_socks_disable() if self.policy.writes_disabled_flags else self

    def strict_nodes_enable(self) -> "TorConfigBuilder":
        return self.write_true_property("StrictNodes")

    def strict_nodes_disable(self) -> "TorConfigBuilder":
        return self.write_false_property("StrictNodes")

    def strict_nodes_from_settings(self) -> "TorConfigBuilder":
        if self.settings.strict_nodes:
            return self.strict_nodes_enable()
        return self.strict_nodes_disable() if self.policy.writes_disabled_flags else self

    def test_socks_enable(self) -> "TorConfigBuilder":
        return self.write_true_property("TestSocks")

    def test_socks_disable(self) -> "TorConfigBuilder":
        return self.write_false_property("TestSocks")

    def test_socks_from_settings(self) -> "TorConfigBuilder":
        """
        Legacy rules only ever write ``TestSocks 0`` (when disabled); current
        rules only ever write ``TestSocks 1`` (when enabled).
        """
        if self.policy.is_legacy:
            return self.test_socks_disable() if not self.settings.test_socks else self
        return self.test_socks_enable() if self.settings.test_socks else self

    def torrc_custom_from_settings(self) -> "TorConfigBuilder":
        custom = self.settings.custom_torrc
        if not custom:
            return self
        # Tor reads torrc as ASCII; unmappable characters become '?'
        text = custom.encode("ascii", errors="replace").decode("ascii")
        for line in text.splitlines():
            if line.strip():
                self.write_line(line)
        return self

    # ------------------------------------------------------------------
    # Control port and files
    # ------------------------------------------------------------------

    def cookie_authentication(self) -> "TorConfigBuilder":
        cookie_file = self.files.cookie_auth_file
        if cookie_file is None:
            return self
        return self.write_true_property("CookieAuthentication").write_line(
            "CookieAuthFile", str(Path(cookie_file).absolute())
        )

    def cookie_authentication_from_settings(self) -> "TorConfigBuilder":
        return self.cookie_authentication() if self.settings.cookie_authentication else self

    def control_port_write_to_file(self, control_port_file: str) -> "TorConfigBuilder":
        return self.write_line("ControlPortWriteToFile", control_port_file).write_line("ControlPort auto")

    def control_port_write_to_file_from_config(self) -> "TorConfigBuilder":
        control_file = self.files.control_port_file
        if control_file is None:
            return self
        return self.control_port_write_to_file(str(Path(control_file).absolute()))

    def geoip_file(self, path: Optional[str]) -> "TorConfigBuilder":
        return self.write_line("GeoIPFile", path)

    def geoip_v6_file(self, path: Optional[str]) -> "TorConfigBuilder":
        return self.write_line("GeoIPv6File", path)

    def set_geoip_files(self) -> "TorConfigBuilder":
        """Reference the GeoIP databases that exist on disk."""
        geoip, geoip6 = self.files.geoip_file, self.files.geoip6_file
        if geoip is not None and Path(geoip).exists():
            self.geoip_file(str(Path(geoip).resolve()))
        if geoip6 is not None and Path(geoip6).exists():
            self.geoip_v6_file(str(Path(geoip6).resolve()))
        return self

    def geoip_files_from_config(self) -> "TorConfigBuilder":
        return self.set_geoip_files()

    # ------------------------------------------------------------------
    # Ports
    # ------------------------------------------------------------------

    def dns_port(self, dns_host: Optional[str], dns_port: Optional[int]) -> "TorConfigBuilder":
        return self.write_address("DNSPort", dns_host, dns_port, None)

    def dns_port_from_settings(self) -> "TorConfigBuilder":
        return self.dns_port(self.settings.dns_host, self.settings.dns_port)

    def http_tunnel_port(
        self, host: Optional[str], port: Optional[int], isolation_flags: Optional[str]
    ) -> "TorConfigBuilder":
        return self.write_address("HTTPTunnelPort", host, port, isolation_flags)

    def http_tunnel_port_from_settings(self) -> "TorConfigBuilder":
        return self.http_tunnel_port(
            self.settings.http_tunnel_host,
            self.settings.http_tunnel_port,
            self._isolation_flag(),
        )

    def transparent_proxy_port(self, address: Optional[str], port: Optional[int]) -> "TorConfigBuilder":
        return self.write_address("TransPort", address, port, None)

    def trans_port_from_settings(self) -> "TorConfigBuilder":
        return self.transparent_proxy_port(
            self.settings.transparent_proxy_address,
            self.settings.transparent_proxy_port,
        )

    def socks_port(self, socks_port: Optional[str], isolation_flag: Optional[str]) -> "TorConfigBuilder":
        if not socks_port:
            return self
        parts = ["SOCKSPort", socks_port]
        if isolation_flag:
            parts.append(isolation_flag)
        parts.extend(["KeepAliveIsolateSOCKSAuth", "IPv6Traffic", "PreferIPv6"])
        return self.write_line(*parts)

    def socks_port_from_settings(self) -> "TorConfigBuilder":
        """
        Write the SOCKS port, falling back to ``auto`` when the requested
        port is already taken on loopback.
        """
        socks_port = self.settings.socks_port
        if not socks_port:
            return self
        if ":" in socks_port:
            socks_port = socks_port.split(":")[1]

        if socks_port.lower() != "auto" and is_local_port_open(int(socks_port)):
            logger.info("SOCKS port in use, letting Tor pick one", port=socks_port)
            socks_port = "auto"
        return self.socks_port(socks_port, self._isolation_flag())

    def proxy_on_all_interfaces(self) -> "TorConfigBuilder":
        return self.write_line("SocksListenAddress 0.0.0.0")

    def proxy_on_all_interfaces_from_settings(self) -> "TorConfigBuilder":
        return self.proxy_on_all_interfaces() if self.settings.open_proxy_on_all_interfaces else self

    def virtual_address_network(self, address: Optional[str]) -> "TorConfigBuilder":
        return self.write_line("VirtualAddrNetwork", address)

    def virtual_address_network_from_settings(self) -> "TorConfigBuilder":
        return self.virtual_address_network(self.settings.virtual_address_network)

    def _isolation_flag(self) -> Optional[str]:
        return ISOLATE_DEST_ADDR if self.settings.isolate_dest_addr else None

    # ------------------------------------------------------------------
    # Nodes and firewall
    # ------------------------------------------------------------------

    def entry_nodes(self, entry_nodes: Iterable[str]) -> "TorConfigBuilder":
        return self.write_nodes_line("EntryNodes", entry_nodes)

    def exit_nodes(self, exit_nodes: Iterable[str]) -> "TorConfigBuilder":
        return self.write_nodes_line("ExitNodes", exit_nodes)

    def exclude_nodes(self, exclude_nodes: Iterable[str]) -> "TorConfigBuilder":
        return self.write_nodes_line("ExcludeNodes", exclude_nodes)

    def nodes_from_settings(self) -> "TorConfigBuilder":
        """Sets the entry/exit/exclude nodes."""
        return (
            self.entry_nodes(self.settings.entry_nodes)
            .exit_nodes(self.settings.exit_nodes)
            .exclude_nodes(self.settings.exclude_nodes)
        )

    def reachable_addresses(self, ports: Iterable[str]) -> "TorConfigBuilder":
        return self.write_nodes_line("ReachableAddresses", ports)

    def reachable_addresses_from_settings(self) -> "TorConfigBuilder":
        if not self.settings.reachable_address:
            return self
        return self.reachable_addresses(self.settings.reachable_address_ports)

    # ------------------------------------------------------------------
    # Relay
    # ------------------------------------------------------------------

    def make_non_exit_relay(
        self, dns_file: str, or_port: Optional[int], nickname: Optional[str]
    ) -> "TorConfigBuilder":
        self.write_line("ServerDNSResolvConfFile", dns_file)
        self.write_address("ORPort", None, or_port, None)
        self.write_line("Nickname", nickname)
        return self.write_line("ExitPolicy reject *:*")

    def non_exit_relay_from_settings(self) -> "TorConfigBuilder":
        """
        Configure a non-exit relay using the default nameserver file.

        Relays are only set up for unrestricted, bridge-less connections. A
        nameserver file that cannot be created skips the relay block.
        """
        settings = self.settings
        if settings.reachable_address or settings.use_bridges or not settings.relay:
            return self
        try:
            resolv = self.files.ensure_nameserver_file()
        except (OSError, RuntimeError) as e:
            logger.warning("Skipping relay configuration", error=str(e))
            return self
        return self.make_non_exit_relay(str(resolv), settings.relay_port, settings.relay_nickname)

    # ------------------------------------------------------------------
    # Upstream proxies
    # ------------------------------------------------------------------

    def proxy_socks5(self, host: Optional[str], port: Optional[int]) -> "TorConfigBuilder":
        """Set socks5 proxy with no authentication. This can be set if you are using a VPN."""
        if not host or port is None:
            return self
        return self.write_line("socks5Proxy", f"{host}:{port}")

    def proxy_socks5_from_settings(self) -> "TorConfigBuilder":
        if self.settings.use_socks5 and not self.settings.use_bridges:
            return self.proxy_socks5(self.settings.proxy_socks5_host, self.settings.proxy_socks5_port)
        return self

    def proxy_with_authentication(
        self,
        proxy_type: Optional[str],
        proxy_host: Optional[str],
        proxy_port: Optional[int],
        proxy_user: Optional[str],
        proxy_pass: Optional[str],
    ) -> "TorConfigBuilder":
        """
        Write an upstream proxy and its credentials.

        Does nothing unless type, host and port are all set. For non-socks5
        proxies the authenticator line carries ``user:port``; the password is
        never written there.
        """
        if not proxy_type or not proxy_host or proxy_port is None:
            return self

        self.write_line(f"{proxy_type}Proxy", f"{proxy_host}:{proxy_port}")

        if proxy_user is not None and proxy_pass is not None:
            if proxy_type.lower() == "socks5":
                self.write_line("Socks5ProxyUsername", proxy_user)
                self.write_line("Socks5ProxyPassword", proxy_pass)
            else:
                self.write_line(f"{proxy_type}ProxyAuthenticator", f"{proxy_user}:{proxy_port}")
        elif proxy_pass is not None:
            self.write_line(f"{proxy_type}ProxyAuthenticator", f"{proxy_user or ''}:{proxy_port}")
        return self

    def proxy_with_authentication_from_settings(self) -> "TorConfigBuilder":
        s = self.settings
        if s.use_socks5 or s.use_bridges:
            return self
        return self.proxy_with_authentication(
            s.proxy_type, s.proxy_host, s.proxy_port, s.proxy_user, s.proxy_password
        )

    # ------------------------------------------------------------------
    # Bridges
    # ------------------------------------------------------------------

    def bridge(self, bridge_type: Optional[str], config: Optional[str]) -> "TorConfigBuilder":
        return self.write_line("Bridge", bridge_type, config)

    def bridge_custom(self, config: Optional[str]) -> "TorConfigBuilder":
        return self.write_line("Bridge", config.strip() if config else config)

    def custom_bridges(self, bridges: Iterable[str]) -> "TorConfigBuilder":
        """
        Write user bridge lines. A custom entry looks like
        ``69.163.45.129:443 9F090DE98CA6F67DEEB1F87EFE7C1BFD884E6E2F``.
        """
        for line in bridges:
            self.bridge_custom(line)
        return self

    def custom_bridges_from_settings(self) -> "TorConfigBuilder":
        if not self.settings.use_bridges:
            return self
        return self.custom_bridges(self._custom_bridge_lines())

    def use_bridges(self) -> "TorConfigBuilder":
        return self.write_true_property("UseBridges")

    def dont_use_bridges(self) -> "TorConfigBuilder":
        return self.write_false_property("UseBridges")

    def use_bridges_from_settings(self) -> "TorConfigBuilder":
        if not self.settings.use_bridges:
            return self
        if self._custom_bridge_lines() or self._has_user_defined_bridges():
            return self.use_bridges()
        if self.policy.is_legacy:
            return self.dont_use_bridges()
        logger.warning("Bridges enabled but no bridges available")
        return self

    def default_bridges_from_settings(self) -> "TorConfigBuilder":
        """
        Write bridges from the predefined catalog for the requested transports.

        Custom bridges take precedence: when any are set, nothing is written.
        """
        return self.default_bridges_from_resources(self.settings.bridge_types)

    def default_bridges_from_resources(self, bridge_types: Iterable[BridgeType]) -> "TorConfigBuilder":
        bridge_types = list(bridge_types)
        if (
            not self.settings.use_bridges
            or not bridge_types
            or self._bridge_source is None
            or self._custom_bridge_lines()
        ):
            return self

        try:
            with self._open(self._bridge_source) as stream:
                bridges = read_default_bridges(stream)
        except OSError as e:
            logger.warning("Could not read bridge catalog", error=str(e))
            return self

        return self.write_default_bridges(bridges, bridge_types)

    def write_default_bridges(self, bridges: List[Bridge], bridge_types: Iterable[BridgeType]) -> "TorConfigBuilder":
        """
        Write the catalog entries matching ``bridge_types``.

        With the legacy rules and a bridge cap, the catalog is shuffled first
        and only the first ``max_bridges`` matches are kept.
        """
        candidates = list(bridges)
        if self.policy.shuffles_bridges:
            random.Random(time.time_ns()).shuffle(candidates)

        selected = filter_bridges(candidates, bridge_types)
        if self.policy.shuffles_bridges:
            selected = selected[:self.policy.max_bridges]

        if not selected:
            logger.warning(
                "No bridges matched requested transports",
                bridge_types=[BridgeType(t).value for t in bridge_types],
            )
        for b in selected:
            self.bridge(b.type, b.config)
        return self

    def _has_user_defined_bridges(self) -> bool:
        """True if bridge types are requested and a bridge catalog is available."""
        return bool(self.settings.bridge_types) and self._bridge_source is not None

    def _custom_bridge_lines(self) -> List[str]:
        """Non-blank custom bridge lines from the settings, then from the custom bridge list."""
        lines = [line for line in self.settings.custom_bridges if line.strip()]
        if self._custom_bridge_source is None:
            return lines

        try:
            with self._open(self._custom_bridge_source) as stream:
                lines.extend(b.config for b in read_custom_bridges(stream))
        except OSError as e:
            logger.warning("Could not read custom bridges", error=str(e))
        return lines

    @staticmethod
    def _open(source) -> BinaryIO:
        if callable(source):
            return source()
        return open(source, "rb")

    # ------------------------------------------------------------------
    # Pluggable transports
    # ------------------------------------------------------------------

    def client_transport_plugins(self, transports: List[str], client_path: str) -> "TorConfigBuilder":
        """Write ``ClientTransportPlugin <t1> [t2 ...] exec <path>``."""
        if not transports:
            return self
        return self.write_line("ClientTransportPlugin", *transports, "exec", client_path)

    def transport_plugin_meek(self, client_path: str) -> "TorConfigBuilder":
        return self.client_transport_plugins([BridgeType.MEEK_LITE.value], client_path)

    def transport_plugin_obfs(self, client_path: str) -> "TorConfigBuilder":
        obfs = [BridgeType.OBFS3.value, BridgeType.OBFS4.value]
        if self.policy.combines_obfs_plugins:
            return self.client_transport_plugins(obfs, client_path)
        for transport in obfs:
            self.client_transport_plugins([transport], client_path)
        return self

    def configure_pluggable_transports(
        self,
        pluggable_transport_client: Optional[Union[str, os.PathLike]],
        bridge_types: Iterable[BridgeType],
    ) -> "TorConfigBuilder":
        """
        Register the transport client for the requested bridge types.

        Args:
            pluggable_transport_client: Path to the transport client binary
            bridge_types: Transports that need the client

        Raises:
            FileNotFoundError: If the binary does not exist
            PermissionError: If the binary is not executable
        """
        bridge_types = [BridgeType(t) for t in (bridge_types or [])]
        if pluggable_transport_client is None or not bridge_types:
            return self

        client = Path(pluggable_transport_client)
        if not client.exists():
            raise FileNotFoundError(f"Bridge binary does not exist: {client.resolve()}")
        if not client.is_file() or not os.access(client, os.X_OK):
            raise PermissionError(f"Bridge binary is not executable: {client.resolve()}")

        client_path = str(client.resolve())
        obfs_written = False
        for bridge_type in dict.fromkeys(bridge_types):
            if bridge_type.uses_obfs_client:
                if not obfs_written:
                    self.transport_plugin_obfs(client_path)
                    obfs_written = True
            elif bridge_type == BridgeType.MEEK_LITE:
                self.transport_plugin_meek(client_path)
        return self

    def pluggable_transports_from_settings(self) -> "TorConfigBuilder":
        if not self.settings.use_bridges:
            return self
        return self.configure_pluggable_transports(
            self.files.pluggable_transport_client, self.settings.bridge_types
        )
