"""
Bridge catalog parsing for onionrc.

Bridge lists are line oriented text. Two flavours exist:

- Default (packaged) catalogs, one ``<transport> <bridge line>`` entry per line:
  ``obfs4 193.11.166.194:27025 1AE039EE... cert=... iat-mode=0``
- Custom lists entered by the user, one opaque bridge line per row:
  ``69.163.45.129:443 9F090DE98CA6F67DEEB1F87EFE7C1BFD884E6E2F``

Parsing never fails: malformed lines are skipped and read errors leave a
partial list.
"""

import io
from dataclasses import dataclass
from enum import Enum
from importlib import resources
from typing import BinaryIO, List

import structlog

logger = structlog.get_logger(__name__)

# Type tag given to bridges entered by the user
CUSTOM_BRIDGE_TYPE = "custom"

BUILTIN_BRIDGES_RESOURCE = "bridges.txt"


class BridgeType(str, Enum):
    """Pluggable transport types a bridge can use."""
    OBFS3 = "obfs3"
    OBFS4 = "obfs4"
    MEEK_LITE = "meek_lite"

    @property
    def uses_obfs_client(self) -> bool:
        """obfs3 and obfs4 are served by the same client binary."""
        return self in (BridgeType.OBFS3, BridgeType.OBFS4)


@dataclass
class Bridge:
    """A single bridge entry read from a catalog."""
    type: str      # Transport name, or "custom"
    config: str    # Remainder of the line

    @property
    def is_custom(self) -> bool:
        return self.type == CUSTOM_BRIDGE_TYPE

    def to_bridge_line(self) -> str:
        """Convert to torrc bridge line format."""
        if self.is_custom:
            return f"Bridge {self.config}"
        return f"Bridge {self.type} {self.config}"


def _text_lines(stream: BinaryIO):
    # Undecodable bytes become U+FFFD
    return io.TextIOWrapper(stream, encoding="utf-8", errors="replace", newline=None)


def read_default_bridges(stream: BinaryIO) -> List[Bridge]:
    """
    Read typed bridges from a default catalog stream.

    Each line is split on the first run of whitespace into (type, config).
    Lines that do not yield exactly two tokens are ignored.

    Args:
        stream: Binary stream of UTF-8 text. Closing it is up to the caller.

    Returns:
        Bridges in file order
    """
    bridges: List[Bridge] = []
    reader = _text_lines(stream)
    try:
        for line in reader:
            tokens = line.strip().split(maxsplit=1)
            if len(tokens) != 2:
                continue  # bad entry
            bridges.append(Bridge(type=tokens[0], config=tokens[1]))
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read bridge catalog", error=str(e), parsed=len(bridges))
    finally:
        # Leave the underlying stream open for the caller's context manager
        reader.detach()
    return bridges


def read_custom_bridges(stream: BinaryIO) -> List[Bridge]:
    """
    Read user-defined bridges. Every non-empty line becomes one custom bridge.
    """
    bridges: List[Bridge] = []
    reader = _text_lines(stream)
    try:
        for line in reader:
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            bridges.append(Bridge(type=CUSTOM_BRIDGE_TYPE, config=line))
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read custom bridges", error=str(e), parsed=len(bridges))
    finally:
        reader.detach()
    return bridges


def filter_bridges(bridges: List[Bridge], bridge_types) -> List[Bridge]:
    """Keep the bridges whose transport is one of ``bridge_types``."""
    wanted = {BridgeType(t).value for t in bridge_types}
    return [b for b in bridges if b.type in wanted]


def open_builtin_bridges() -> BinaryIO:
    """Open the bridge catalog shipped with the package."""
    return resources.files("onionrc.data").joinpath(BUILTIN_BRIDGES_RESOURCE).open("rb")
