"""Report builder — text and JSON output for scan results."""

import json
from typing import Any

from greytone.core.types import ScanReport


def format_text(report: ScanReport) -> str:
    """Format report as a one-line human-readable summary."""
    parts = [
        f'greytone {report.kind}:',
        f'visited={report.visited}',
        f'recoloured={report.recoloured}',
    ]
    if report.roots:
        parts.append(f'roots={report.roots}')
    if report.invisible:
        parts.append(f'invisible={report.invisible}')
    if report.failed:
        parts.append(f'failed={report.failed}')
    if report.attributes:
        attrs = ', '.join(f'{name}:{count}' for name, count in sorted(report.attributes.items()))
        parts.append(f'[{attrs}]')
    parts.append(f'mapping={report.mapping_size}')
    return ' '.join(parts)


def format_json(report: ScanReport) -> str:
    """Format report as JSON."""
    obj: dict[str, Any] = {
        'kind': report.kind,
        'visited': report.visited,
        'recoloured': report.recoloured,
        'attributes': dict(sorted(report.attributes.items())),
        'invisible': report.invisible,
        'failed': report.failed,
        'mapping_size': report.mapping_size,
    }
    if report.roots:
        obj['roots'] = report.roots
    return json.dumps(obj, indent=2)
