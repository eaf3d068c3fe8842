"""Range-remapped nearest-luminance mapping.

Source luminance is first stretched linearly from the range observed when the
mapping was created, [src_min, src_max], onto the palette's own luminance
range, then matched to the nearest entry. Colours seen later that fall outside
the observed range extrapolate past the palette ends and so land on the
extreme entries.

A degenerate observed range (one grey, or none) uses a span of 1.

Example:
    GREYTONE_POLICY=range
"""

from greytone.core.types import Policy

policy = Policy(
    name='range',
    help='Stretch observed grey luminance range onto the palette range, then nearest entry.',
)


@policy.target
def target(luminance: float, source_range: tuple[float, float], palette_range: tuple[float, float]) -> float:
    src_min, src_max = source_range
    pal_min, pal_max = palette_range
    relative = (luminance - src_min) / ((src_max - src_min) or 1.0)
    return pal_min + relative * (pal_max - pal_min)
