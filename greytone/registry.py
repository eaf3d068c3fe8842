"""Policy auto-discovery and registration.

Scans greytone/policies/ for modules that define a `policy` object of type
Policy. Collects them into a dict keyed by name.

When pkgutil.iter_modules finds nothing (frozen builds) the explicit module
list below is imported instead.
"""

import importlib
import pkgutil

from greytone.core.types import Policy

_registry: dict[str, Policy] = {}

# Known policy module names, fallback for frozen builds
_POLICY_MODULES = [
    'direct',
    'range_remap',
]


def discover() -> dict[str, Policy]:
    """Import all policy modules and return the registry."""
    if _registry:
        return _registry

    import greytone.policies as pkg

    found_modules = [
        modname for _importer, modname, _ispkg in pkgutil.iter_modules(pkg.__path__) if not modname.startswith('_')
    ]
    if not found_modules:
        found_modules = _POLICY_MODULES

    for modname in found_modules:
        module = importlib.import_module(f'greytone.policies.{modname}')
        pol = getattr(module, 'policy', None)
        if isinstance(pol, Policy):
            _registry[pol.name] = pol

    return _registry


def get(name: str) -> Policy:
    """Get a policy by name."""
    reg = discover()
    if name not in reg:
        raise KeyError(f'Unknown policy: {name}. Available: {", ".join(sorted(reg))}')
    return reg[name]


def all_policies() -> dict[str, Policy]:
    """Return all registered policies."""
    return discover()
