"""Template variables and ``{{name}}`` substitution.

Template variables arrive from YAML as strings, lists of strings or mappings
of lists. They are held as one of three tagged values:

- :class:`Scalar` substitutes as-is and is sent as-is.
- :class:`ListValue` substitutes as its items joined by commas and is sent as
  its first item.
- :class:`Nested` (mapping of lists) is never substituted; it is sent as the
  first item of its first non-empty list.

Each template evaluation against a target gets its own :class:`VariableScope`
cloned from the template's declared variables, so extractor writes never leak
between concurrent evaluations.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union
from urllib.parse import urlparse

TOKEN_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")


@dataclass(frozen=True)
class Scalar:
    value: str


@dataclass(frozen=True)
class ListValue:
    items: Tuple[str, ...]


@dataclass(frozen=True)
class Nested:
    entries: Tuple[Tuple[str, Tuple[str, ...]], ...]


VariableValue = Union[Scalar, ListValue, Nested]


def to_value(raw: Any) -> VariableValue:
    """Convert a YAML-decoded value into its tagged form."""
    if isinstance(raw, (Scalar, ListValue, Nested)):
        return raw
    if isinstance(raw, Mapping):
        return Nested(tuple(
            (str(key), tuple(str(item) for item in _as_items(inner)))
            for key, inner in raw.items()
        ))
    if isinstance(raw, (list, tuple)):
        return ListValue(tuple(str(item) for item in raw if not isinstance(item, (dict, list))))
    if raw is None:
        return Scalar("")
    if isinstance(raw, bool):
        return Scalar("true" if raw else "false")
    return Scalar(str(raw))


def _as_items(value: Any) -> list:
    if isinstance(value, (list, tuple)):
        return [v for v in value if not isinstance(v, (dict, list))]
    if value is None:
        return []
    return [value]


def render(value: VariableValue) -> Optional[str]:
    """String used for ``{{name}}`` substitution, or None if not substitutable."""
    if isinstance(value, Scalar):
        return value.value
    if isinstance(value, ListValue):
        return ",".join(value.items)
    return None


def first_payload(value: VariableValue) -> Optional[str]:
    """Value sent on the wire when a payload is declared in this shape."""
    if isinstance(value, Scalar):
        return value.value
    if isinstance(value, ListValue):
        return value.items[0] if value.items else None
    for _, items in value.entries:
        if items:
            return items[0]
    return None


def substitute(text: str, variables: Mapping[str, Any]) -> str:
    """Replace every known ``{{name}}`` token in one pass.

    Unknown tokens and non-substitutable values are left verbatim. Replacement
    text is not rescanned, so the result does not depend on variable order.
    """
    if not text or "{{" not in text:
        return text

    def replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        rendered = render(to_value(variables[name]))
        return match.group(0) if rendered is None else rendered

    return TOKEN_PATTERN.sub(replace, text)


def url_variables(url: str) -> Dict[str, str]:
    """Request-derived variables for a target URL."""
    parsed = urlparse(url)
    root = f"{parsed.scheme}://{parsed.netloc}"
    hostname = parsed.hostname or ""
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    return {
        "BaseURL": root,
        "RootURL": root,
        "Host": parsed.netloc,
        "Hostname": hostname,
        "FQDN": hostname,
        "Scheme": parsed.scheme,
        "Port": str(port),
    }


class VariableScope:
    """Per-target, per-template variable set."""

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._values: Dict[str, VariableValue] = {}
        for name, raw in (values or {}).items():
            self.set(name, raw)

    @classmethod
    def for_target(cls, declared: Mapping[str, Any], target_url: str) -> "VariableScope":
        scope = cls(declared)
        for name, value in url_variables(target_url).items():
            scope.set(name, value)
        return scope

    def set(self, name: str, raw: Any) -> None:
        self._values[name] = to_value(raw)

    def get(self, name: str) -> Optional[VariableValue]:
        return self._values.get(name)

    def substitute(self, text: str) -> str:
        return substitute(text, self._values)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)
