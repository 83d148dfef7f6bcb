"""
File locations referenced from torrc.

The builder never creates or reads these files itself (apart from the
nameserver file used by relays); it only writes their absolute paths.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)

# Resolvers written to the nameserver file when a relay needs one
DEFAULT_NAMESERVERS = ("8.8.8.8", "8.8.4.4")


@dataclass(frozen=True)
class TorConfigFiles:
    """Paths to files Tor reads or writes."""
    control_port_file: Optional[Path] = None
    cookie_auth_file: Optional[Path] = None
    geoip_file: Optional[Path] = None
    geoip6_file: Optional[Path] = None
    nameserver_file: Optional[Path] = None

    # Pluggable transport client (obfs4proxy / lyrebird)
    pluggable_transport_client: Optional[Path] = None

    @classmethod
    def from_directory(cls, directory: Path, **overrides) -> "TorConfigFiles":
        """Standard layout with every file inside a single Tor data directory."""
        directory = Path(directory)
        paths = {
            "control_port_file": directory / "control.txt",
            "cookie_auth_file": directory / "control_auth_cookie",
            "geoip_file": directory / "geoip",
            "geoip6_file": directory / "geoip6",
            "nameserver_file": directory / "nameservers",
        }
        paths.update(overrides)
        return cls(**paths)

    def ensure_nameserver_file(self) -> Path:
        """
        Return the nameserver file, writing the default resolvers if missing.

        Raises:
            RuntimeError: If no nameserver file is configured
            OSError: If the file cannot be written
        """
        if self.nameserver_file is None:
            raise RuntimeError("No nameserver file configured")

        path = Path(self.nameserver_file)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            content = "".join(f"nameserver {ns}\n" for ns in DEFAULT_NAMESERVERS)
            path.write_text(content)
            logger.info("Created nameserver file", file=str(path))
        return path.resolve()
