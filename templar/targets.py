"""Target list input."""

from pathlib import Path
from typing import Iterable, List, Union

from templar.utils import normalize_target


def parse_targets(lines: Iterable[str], default_scheme: str = "https") -> List[str]:
    """Normalize target lines; blank lines and ``#`` comments are skipped."""
    targets = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        targets.append(normalize_target(line, default_scheme))
    return targets


def read_targets(path: Union[str, Path], default_scheme: str = "https") -> List[str]:
    """Read a newline-delimited targets file."""
    with open(path, encoding="utf-8", errors="ignore") as f:
        return parse_targets(f, default_scheme)
