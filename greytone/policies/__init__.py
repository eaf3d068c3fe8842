"""Auto-discovery of luminance mapping policies.

Every .py file in this package that defines a `policy` object is
auto-registered by greytone.registry.discover().

The explicit imports below keep the modules visible to freezers that
pkgutil.iter_modules cannot see into.
"""

import greytone.policies.direct as _direct  # noqa: F401
import greytone.policies.range_remap as _range_remap  # noqa: F401
