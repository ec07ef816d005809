"""Transport registry.

Maps the configured transport name to a concrete factory. Callers depend on
the `TransportFactory` port.
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

from gateway.errors import TransportConstructError

if TYPE_CHECKING:
    from gateway.transport.ports import TransportFactory


def create_transport(name: str) -> TransportFactory:
    """Resolve ``loopback`` or a ``package.module:attr`` import path.

    A class or zero-argument callable at ``attr`` is called to build the
    factory; any other object is used as the factory itself.
    """
    name = (name or "").strip()

    if name.lower() == "loopback":
        from gateway.transport.loopback import LoopbackTransport

        return LoopbackTransport()

    module_name, sep, attr = name.partition(":")
    if not sep or not module_name or not attr:
        raise TransportConstructError(
            f"Unknown transport {name!r} (expected 'loopback' or 'module:attr')"
        )

    try:
        module = importlib.import_module(module_name)
        target = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise TransportConstructError(f"Cannot import transport {name!r}: {e}") from e

    if not isinstance(target, type) and hasattr(target, "open"):
        factory = target
    elif not callable(target):
        raise TransportConstructError(f"Transport {name!r} is not a factory")
    else:
        try:
            factory = target()
        except Exception as e:
            raise TransportConstructError(f"Transport {name!r} failed to build: {e}") from e

    if not hasattr(factory, "open"):
        raise TransportConstructError(f"Transport {name!r} has no open() method")
    return factory
