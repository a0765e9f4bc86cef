"""
Factory for loading the topology backend plugin.

The Vitess topology, tablet manager and wrangler clients live outside this
package. A deployment names the backend as "module:callable"; the callable
is imported lazily and called with no arguments to build a
TopoBackendProtocol implementation.
"""

import importlib

from vitess_protocols import TopoBackendProtocol


def load_topo_backend(spec: str) -> TopoBackendProtocol:
    """
    Import and build a topology backend.

    Args:
        spec: "package.module:factory", e.g. "vitess_grpc.backend:create_backend".

    Returns:
        The backend instance.

    Raises:
        ValueError: If spec is malformed, can't be imported, or doesn't
            produce a TopoBackendProtocol.
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Invalid topology backend '{spec}': expected 'module:callable'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Can't import topology backend module '{module_name}': {e}") from e

    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise ValueError(f"Topology backend module '{module_name}' has no callable '{attr}'")

    backend = factory()
    if not isinstance(backend, TopoBackendProtocol):
        raise ValueError(f"'{spec}' did not return a topology backend")
    return backend
