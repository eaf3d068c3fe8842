"""Direct nearest-luminance mapping (default).

The replacement is the palette entry whose relative luminance is closest to
the source colour's own luminance. Sources darker than the darkest entry all
collapse onto it, likewise at the light end.

Example:
    GREYTONE_POLICY=direct
"""

from greytone.core.types import Policy

policy = Policy(
    name='direct',
    help='Nearest palette entry by relative luminance.',
)


@policy.target
def target(luminance: float, source_range: tuple[float, float], palette_range: tuple[float, float]) -> float:
    return luminance
