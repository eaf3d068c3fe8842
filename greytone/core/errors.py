"""Exception types for greytone.

None of these are fatal to a running engine: each is recovered where it is
raised or one level up, and only ever reaches the log.
"""


class GreytoneError(Exception):
    """Base class for greytone errors."""


class ParseFailure(GreytoneError, ValueError):
    """A colour string could not be parsed. Never escapes parse_colour()."""


class ConfigurationUnavailable(GreytoneError):
    """The palette or settings source could not be read."""


class ElementUnresolvable(GreytoneError):
    """A host tree could not resolve style or geometry for an element."""
