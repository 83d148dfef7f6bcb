"""
torrc generation and storage.

Glue between application settings, the bridge catalog and
``TorConfigBuilder``. The text is fully rendered before anything touches
disk, and written atomically, so a failed run never leaves a partial torrc.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

import structlog

from .bridge_list import open_builtin_bridges
from .builder import BridgeSource, TorConfigBuilder
from .core.config import Settings

logger = structlog.get_logger(__name__)


def generate_torrc(
    settings: Settings,
    bridges: Optional[BridgeSource] = None,
    custom_bridges: Optional[BridgeSource] = None,
) -> str:
    """
    Render torrc for the given application settings.

    Args:
        settings: Application settings
        bridges: Bridge catalog override; defaults to the configured
            bridges file, or the packaged list
        custom_bridges: User bridge list override; defaults to the
            configured custom bridges file

    Returns:
        torrc content string

    Raises:
        FileNotFoundError: Pluggable transport client is missing
        PermissionError: Pluggable transport client is not executable
    """
    if bridges is None:
        bridges = settings.get_bridges_file() or open_builtin_bridges
    if custom_bridges is None:
        custom_bridges = settings.get_custom_bridges_file()

    builder = TorConfigBuilder(
        settings.tor,
        files=settings.get_config_files(),
        bridges=bridges,
        policy=settings.builder.to_policy(),
        custom_bridges=custom_bridges,
    )
    return builder.update_tor_config().as_string()


def write_torrc(content: str, torrc_file: Path) -> Path:
    """
    Atomically write torrc content.

    Args:
        content: Rendered torrc
        torrc_file: Destination path

    Returns:
        The written path
    """
    torrc_file = Path(torrc_file)
    torrc_file.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=".torrc-", dir=torrc_file.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
        os.replace(tmp_name, torrc_file)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("Wrote torrc", file=str(torrc_file), lines=content.count("\n"))
    return torrc_file
