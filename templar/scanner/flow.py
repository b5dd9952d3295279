"""Parsing of template ``flow`` expressions.

A flow is a ``&&``-joined chain of steps such as ``http(1) && http(2)``. Each
step names a 1-based position in the template's normalized request list. The
chain is evaluated left to right and stops at the first step that does not
match.
"""

import re
from dataclasses import dataclass
from typing import List

from templar.config import RequestType
from templar.errors import FlowError

_STEP = re.compile(r"^(\w+)\s*\(\s*(\d+)\s*\)$")
_PROTOCOLS = {t.value for t in RequestType}


@dataclass(frozen=True)
class FlowStep:
    protocol: str
    index: int

    @property
    def position(self) -> int:
        """Zero-based index into the request list."""
        return self.index - 1


def parse_flow(flow: str, request_count: int) -> List[FlowStep]:
    """Parse and validate every step before anything is executed.

    Raises:
        FlowError: a step is malformed or its index is out of range
    """
    steps = []
    for part in flow.split("&&"):
        part = part.strip()
        if not part:
            continue
        match = _STEP.match(part)
        if not match or match.group(1).lower() not in _PROTOCOLS:
            raise FlowError(f"invalid flow step: {part!r}")
        index = int(match.group(2))
        if index < 1 or index > request_count:
            raise FlowError(f"invalid flow request index: {index}")
        steps.append(FlowStep(protocol=match.group(1).lower(), index=index))

    if not steps:
        raise FlowError(f"empty flow: {flow!r}")
    return steps
