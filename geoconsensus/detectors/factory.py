"""
Detector factory: builds the detector set wired into the API from config.
"""

from __future__ import annotations

from geoconsensus.detectors import Detector
from geoconsensus.detectors.channel import ChannelDetector


def build_detectors(config_string: str) -> list[Detector]:
    """
    Parse ``"name:channel:priority,..."`` into channel detectors.

    Priority is optional and defaults to 1. Raises ValueError on a
    malformed entry.
    """
    detectors: list[Detector] = []
    for entry in config_string.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = [p.strip() for p in entry.split(":")]
        if len(parts) not in (2, 3) or not all(parts):
            raise ValueError(f"Malformed detector entry: {entry!r}")
        name, channel = parts[0], parts[1]
        try:
            priority = float(parts[2]) if len(parts) == 3 else 1.0
        except ValueError:
            raise ValueError(f"Invalid priority in detector entry: {entry!r}") from None
        detectors.append(ChannelDetector(name, channel, kind=channel, priority=priority))
    return detectors
