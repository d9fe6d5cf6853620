"""
Driver registry: extension id -> DriverScript class.

Drivers register with @register_driver("<extension id>"). Drivers shipped in
other distributions are discovered through the "scrape_ledger.drivers"
entry point group.
"""

import logging
from collections.abc import Callable
from importlib.metadata import entry_points

from ..errors import DriverNotFoundError
from .runtime import DriverScript

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "scrape_ledger.drivers"

_DRIVERS: dict[str, type[DriverScript]] = {}


def register_driver(
    extension_id: str,
) -> Callable[[type[DriverScript]], type[DriverScript]]:
    """Class decorator registering a driver for an extension id."""

    def decorator(cls: type[DriverScript]) -> type[DriverScript]:
        if extension_id in _DRIVERS and _DRIVERS[extension_id] is not cls:
            raise ValueError(f"driver already registered for extension '{extension_id}'")
        _DRIVERS[extension_id] = cls
        if not cls.name:
            cls.name = extension_id
        return cls

    return decorator


def unregister_driver(extension_id: str) -> None:
    _DRIVERS.pop(extension_id, None)


def get_driver(extension_id: str) -> DriverScript:
    """
    Instantiate the driver for an extension id.

    Raises:
        DriverNotFoundError: If no driver is registered
    """
    cls = _DRIVERS.get(extension_id)
    if cls is None:
        raise DriverNotFoundError(extension_id)
    return cls()


def list_drivers() -> list[str]:
    return sorted(_DRIVERS)


def load_driver_plugins(group: str = ENTRY_POINT_GROUP) -> list[str]:
    """Import drivers advertised by installed distributions; returns loaded names."""
    loaded = []
    for ep in entry_points(group=group):
        ep.load()
        loaded.append(ep.name)
        logger.debug("Loaded driver plugin %s", ep.name)
    return loaded
