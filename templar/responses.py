"""Captured protocol responses and the per-request match context."""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class HTTPResponseData:
    """A live HTTP response with its decoded, size-capped body."""

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    url: str = ""
    retries: int = 0

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass
class DNSResponse:
    records: List[str]
    query_type: str = "A"

    @property
    def raw(self) -> str:
        return "\n".join(self.records)


@dataclass
class NetworkResponse:
    data: bytes


@dataclass
class HeadlessResponse:
    html: str
    url: str = ""
    status_code: int = 0
    render_time: float = 0.0


@dataclass
class MatchContext:
    """Whatever one request captured; absent fields make matchers inapplicable."""

    response: Optional[HTTPResponseData] = None
    body: Optional[bytes] = None
    dns: Optional[DNSResponse] = None
    network: Optional[NetworkResponse] = None
    headless: Optional[HeadlessResponse] = None

    @classmethod
    def from_http(cls, response: HTTPResponseData) -> "MatchContext":
        return cls(response=response, body=response.body)

    @classmethod
    def from_html(cls, html: str) -> "MatchContext":
        return cls(body=html.encode("utf-8"))

    @classmethod
    def from_headless(cls, page: HeadlessResponse) -> "MatchContext":
        return cls(body=page.html.encode("utf-8"), headless=page)

    @property
    def has_content(self) -> bool:
        return self.response is not None or self.body is not None

    @property
    def content(self) -> bytes:
        if self.body is not None:
            return self.body
        if self.response is not None:
            return self.response.body
        return b""

    @property
    def status_code(self) -> Optional[int]:
        if self.response is not None:
            return self.response.status_code
        if self.headless is not None and self.headless.status_code:
            return self.headless.status_code
        return None

    @property
    def headers(self) -> Dict[str, str]:
        return self.response.headers if self.response is not None else {}


def header_text(headers: Dict[str, str]) -> str:
    return "\n".join(f"{k}: {v}" for k, v in headers.items())


def part_text(ctx: MatchContext, part: str) -> str:
    """Text of the selected response part (body, header, all or status)."""
    body = ctx.content.decode("utf-8", errors="replace")
    part = (part or "body").lower()
    if part == "header":
        return header_text(ctx.headers)
    if part == "all":
        return f"{body}\n{header_text(ctx.headers)}"
    if part == "status":
        status = ctx.status_code
        return "" if status is None else str(status)
    return body


def part_bytes(ctx: MatchContext, part: str) -> bytes:
    part = (part or "body").lower()
    if part == "body":
        return ctx.content
    if part == "all":
        return ctx.content + b"\n" + header_text(ctx.headers).encode("utf-8")
    return part_text(ctx, part).encode("utf-8")


def part_size(ctx: MatchContext, part: str) -> int:
    """Byte size of a part; each header counts as name, value and two separators."""
    part = (part or "body").lower()
    header_size = sum(len(k) + len(v) + 2 for k, v in ctx.headers.items())
    if part == "header":
        return header_size
    if part == "all":
        return len(ctx.content) + header_size
    return len(ctx.content)


def parse_json_path(path: str) -> List[str]:
    """Split a JSON path into keys.

    Handles both:
        - "data.user.token" -> ["data", "user", "token"]
        - "$.items[0].name" -> ["items", "0", "name"]
    """
    path = path.strip()
    if path.startswith("$"):
        path = path[1:]
    path = re.sub(r"\[([^\]]+)\]", r".\1.", path)
    return [part.strip("'\"") for part in path.split(".") if part]


def lookup_json_path(data: Any, path: str) -> Any:
    """Walk dicts by key and lists by index; None when any step is missing."""
    current = data
    for part in parse_json_path(path):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list):
            try:
                idx = int(part)
            except ValueError:
                return None
            if not 0 <= idx < len(current):
                return None
            current = current[idx]
        else:
            return None
        if current is None:
            return None
    return current


def load_json(body: bytes) -> Any:
    """Decode a JSON body, or None when it is not JSON."""
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        return None
