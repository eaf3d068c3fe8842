"""Environment variable loading for greytone.

Load order (first wins):
  1. Existing OS environment variables — never overwrite.
  2. .env file at the explicit path (if provided).
  3. .env file walking up from cwd, stopping at .git (file or dir).

Only GREYTONE_* variables are read back into configuration, see
greytone_environ().
"""

import os
from collections.abc import Mapping
from pathlib import Path

ENV_PREFIX = 'GREYTONE_'


def _find_dotenv(start: Path) -> Path | None:
    """Walk up from start, return first .env found, stop at .git boundary."""
    current = start.resolve()
    while True:
        candidate = current / '.env'
        if candidate.is_file():
            return candidate
        # .git can be a dir (clone) or a file (worktree)
        if (current / '.git').exists():
            return None
        parent = current.parent
        if parent == current:
            return None
        current = parent


def _parse_dotenv(path: Path) -> dict[str, str]:
    """Parse KEY=value / KEY="value" lines. Comments and junk lines are skipped."""
    result: dict[str, str] = {}
    for line in path.read_text(encoding='utf-8').splitlines():
        line = line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        if line.startswith('export '):
            line = line[len('export ') :]
        key, _, raw_value = line.partition('=')
        key = key.strip()
        if key:
            result[key] = raw_value.strip().strip('"').strip("'")
    return result


def load_env(env_file: str | Path | None = None) -> Path | None:
    """Load .env into os.environ for keys not already set.

    Returns the path that was loaded, or None if no .env was found/used.
    """
    if env_file:
        path = Path(env_file)
        if not path.is_file():
            return None
    else:
        path = _find_dotenv(Path.cwd())
        if path is None:
            return None

    for key, value in _parse_dotenv(path).items():
        os.environ.setdefault(key, value)
    return path


def greytone_environ(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """GREYTONE_* variables with the prefix stripped and names lowercased.

    GREYTONE_TOLERANCE=10 becomes {'tolerance': '10'}.
    """
    source = os.environ if environ is None else environ
    return {
        key[len(ENV_PREFIX) :].lower(): value
        for key, value in source.items()
        if key.startswith(ENV_PREFIX) and len(key) > len(ENV_PREFIX)
    }
