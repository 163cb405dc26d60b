"""Core infrastructure: paths, identifiers and the event bus.

Configuration lives in ``moltcore.core.config`` and is imported from there,
since it depends on the logging utilities that themselves depend on this
package.
"""

from .bus import Bus, BusEvent, EventPayload, UnknownEventError
from .global_paths import GlobalPath
from .id import Identifier

__all__ = [
    "Bus",
    "BusEvent",
    "EventPayload",
    "UnknownEventError",
    "GlobalPath",
    "Identifier",
]
