"""
Device selection from a comma-separated device specification.

Tokens are resolved left to right against the devices in discovery order:

- ``all`` selects every device and ends the specification,
- ``GPU-...`` selects the first device whose UUID starts with the token,
- anything else must be a device index.

Matching of ``all`` and of UUID prefixes is case-insensitive.
"""

import logging
import re
from typing import Dict, Optional, Sequence

from .errors import DeviceSelectionError
from .library import Device


logger = logging.getLogger(__name__)

UUID_PREFIX = "gpu-"

# Leading whitespace and a sign are allowed, trailing characters are not.
_INDEX_RE = re.compile(r"[ \t\n\v\f\r]*([+-]?[0-9]+)\Z")

Selection = Dict[int, Device]


def select_devices(spec: Optional[str], devices: Sequence[Device]) -> Selection:
    """Resolve a device specification into a selection.

    Args:
        spec: Comma-separated device specification, or None for no devices
        devices: Available devices in discovery order

    Returns:
        Mapping of ordinal to selected device

    Raises:
        DeviceSelectionError: Naming the first token that does not resolve
    """
    selected: Selection = {}
    if spec is None:
        return selected

    for token in spec.split(','):
        if not token:
            continue

        if token.lower() == "all":
            selected = {ordinal: device for ordinal, device in enumerate(devices)}
            break

        ordinal = _resolve_token(token, devices)
        if ordinal is None:
            raise DeviceSelectionError(token)
        selected[ordinal] = devices[ordinal]

    logger.debug(f"Selected devices {sorted(selected)} from spec {spec!r}")
    return selected


def _resolve_token(token: str, devices: Sequence[Device]) -> Optional[int]:
    """Return the ordinal a token refers to, or None if it does not resolve."""
    if token.lower().startswith(UUID_PREFIX):
        prefix = token.lower()
        for ordinal, device in enumerate(devices):
            if device.uuid.lower().startswith(prefix):
                return ordinal
        return None

    match = _INDEX_RE.match(token)
    if match is None:
        return None
    ordinal = int(match.group(1))
    return ordinal if 0 <= ordinal < len(devices) else None
