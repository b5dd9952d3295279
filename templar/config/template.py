from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, PrivateAttr, field_validator, model_validator

from templar.config.common import (
    DNS_RECORD_TYPES,
    Condition,
    ExtractorType,
    MatcherType,
    RequestType,
    SeverityLevel,
)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _split_tags(value: Any) -> List[str]:
    """Tags may be a comma-separated scalar or a list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(part).strip() for part in value if str(part).strip()]
    raise ValueError(f"unexpected value for tags: {value!r}")


class MatcherConfig(BaseModel):
    type: MatcherType
    condition: str = "and"
    part: str = "body"
    nocase: bool = False

    words: List[str] = Field(default_factory=list)
    regex: List[str] = Field(default_factory=list)
    status: List[int] = Field(default_factory=list)
    size: Optional[int] = None
    dlength: Optional[int] = None
    binary: List[str] = Field(default_factory=list)
    xpath: List[str] = Field(default_factory=list)
    jsonpath: Optional[str] = None
    pattern: Optional[str] = None
    dsl: List[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True, "extra": "allow"}

    @model_validator(mode="before")
    @classmethod
    def _accept_case_insensitive_spelling(cls, data: Any) -> Any:
        if isinstance(data, dict) and "case-insensitive" in data and "nocase" not in data:
            data = dict(data)
            data["nocase"] = data.pop("case-insensitive")
        return data

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            # "jsonpath" is accepted as an alias of the json matcher
            if value == "jsonpath":
                return "json"
        return value

    @field_validator("words", "regex", "binary", "xpath", "dsl", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> List[Any]:
        return [str(v) for v in _as_list(value)]

    @field_validator("status", mode="before")
    @classmethod
    def _listify_status(cls, value: Any) -> List[int]:
        return [int(v) for v in _as_list(value)]

    @field_validator("part", mode="before")
    @classmethod
    def _default_part(cls, value: Any) -> str:
        return str(value).strip().lower() if value else "body"

    @property
    def combine(self) -> Condition:
        """AND/OR combination for matchers that hold several checks."""
        return Condition.parse(self.condition)


class ExtractorConfig(BaseModel):
    type: ExtractorType = ExtractorType.REGEX
    name: str
    part: str = "body"
    group: Optional[int] = None
    regex: List[str] = Field(default_factory=list)
    xpath: List[str] = Field(default_factory=list)
    attribute: Optional[str] = None
    jsonpath: Optional[str] = None
    nocase: bool = False
    base64: bool = False

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "json":
                return "jsonpath"
        return value

    @field_validator("regex", "xpath", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> List[str]:
        return [str(v) for v in _as_list(value)]

    @field_validator("group", mode="before")
    @classmethod
    def _parse_group(cls, value: Any) -> Optional[int]:
        if value is None or value == "":
            return None
        return int(value)


class PreCondition(BaseModel):
    type: str = "dsl"
    dsl: List[str] = Field(default_factory=list)

    @field_validator("dsl", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> List[str]:
        return [str(v) for v in _as_list(value)]


class RequestConfig(BaseModel):
    type: Optional[RequestType] = None
    name: Optional[str] = None
    method: str = "GET"
    path: List[str] = Field(default_factory=list)
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None

    matchers: List[MatcherConfig] = Field(default_factory=list)
    matchers_condition: Condition = Field(default=Condition.AND, alias="matchers-condition")
    extractors: List[ExtractorConfig] = Field(default_factory=list)

    query_type: Optional[str] = None
    attack: Optional[str] = None
    payloads: Dict[str, Any] = Field(default_factory=dict)
    pipeline: bool = False
    options: Dict[str, Any] = Field(default_factory=dict)
    preconditions: List[PreCondition] = Field(default_factory=list, alias="pre-condition")

    model_config = {"populate_by_name": True, "extra": "allow"}

    @model_validator(mode="before")
    @classmethod
    def _record_type_as_dns(cls, data: Any) -> Any:
        """A DNS record name in ``type`` (``type: CNAME``) selects a DNS query."""
        if isinstance(data, dict):
            raw = data.get("type")
            if isinstance(raw, str) and raw.strip().upper() in DNS_RECORD_TYPES:
                data = dict(data)
                data["query_type"] = raw.strip().upper()
                data["type"] = RequestType.DNS.value
        return data

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> str:
        return str(value).strip().upper() if value else "GET"

    @field_validator("path", mode="before")
    @classmethod
    def _listify_path(cls, value: Any) -> List[str]:
        return [str(v) for v in _as_list(value)]

    @field_validator("headers", mode="before")
    @classmethod
    def _stringify_headers(cls, value: Any) -> Dict[str, str]:
        if not value:
            return {}
        return {str(k): str(v) for k, v in dict(value).items()}

    @field_validator("matchers_condition", mode="before")
    @classmethod
    def _parse_condition(cls, value: Any) -> Condition:
        return Condition.parse(value)


class TemplateInfo(BaseModel):
    name: str = ""
    author: str = ""
    severity: Union[SeverityLevel, str] = SeverityLevel.UNKNOWN
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    reference: List[str] = Field(default_factory=list)
    classification: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow"}

    @field_validator("author", mode="before")
    @classmethod
    def _join_authors(cls, value: Any) -> str:
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return "" if value is None else str(value)

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, value: Any) -> Union[SeverityLevel, str]:
        if value is None:
            return SeverityLevel.UNKNOWN
        try:
            return SeverityLevel(str(value).strip().lower())
        except ValueError:
            return str(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _parse_tags(cls, value: Any) -> List[str]:
        return _split_tags(value)

    @field_validator("reference", mode="before")
    @classmethod
    def _listify_reference(cls, value: Any) -> List[str]:
        return [str(v) for v in _as_list(value)]


class Template(BaseModel):
    """A parsed detection template.

    Requests declared under ``http``/``dns``/``network``/``headless`` (and the
    legacy ``requests`` block) are normalized once into :attr:`requests`, each
    tagged with its protocol. The model is treated as immutable afterwards;
    per-target variable state lives in a :class:`~templar.variables.VariableScope`.
    """

    id: str
    info: TemplateInfo = Field(default_factory=TemplateInfo)

    tags: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list)
    severity: Optional[str] = None
    description: Optional[str] = None
    reference: List[str] = Field(default_factory=list)
    classification: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    variables: Dict[str, Any] = Field(default_factory=dict)
    hosts: List[str] = Field(default_factory=list)
    flow: Optional[str] = None
    stop_at_first_match: bool = Field(default=False, alias="stop-at-first-match")
    req_condition: Optional[str] = Field(default=None, alias="req-condition")

    requests_raw: List[RequestConfig] = Field(default_factory=list, alias="requests")
    http: List[RequestConfig] = Field(default_factory=list)
    dns: List[RequestConfig] = Field(default_factory=list)
    network: List[RequestConfig] = Field(default_factory=list)
    headless: List[RequestConfig] = Field(default_factory=list)

    file_path: Optional[str] = None

    _requests: List[RequestConfig] = PrivateAttr(default_factory=list)

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("tags", mode="before")
    @classmethod
    def _parse_tags(cls, value: Any) -> List[str]:
        return _split_tags(value)

    @field_validator("authors", "reference", "hosts", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> List[str]:
        return [str(v) for v in _as_list(value)]

    @field_validator("variables", mode="before")
    @classmethod
    def _default_variables(cls, value: Any) -> Dict[str, Any]:
        return dict(value) if value else {}

    @field_validator("flow", mode="before")
    @classmethod
    def _strip_flow(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value).strip() or None

    def model_post_init(self, __context: Any) -> None:
        self._requests = self._normalize_requests()

    def _normalize_requests(self) -> List[RequestConfig]:
        blocks = (
            (self.requests_raw, RequestType.HTTP),
            (self.http, RequestType.HTTP),
            (self.dns, RequestType.DNS),
            (self.network, RequestType.NETWORK),
            (self.headless, RequestType.HEADLESS),
        )
        normalized = []
        for block, default_type in blocks:
            for request in block:
                if request.type is None:
                    request = request.model_copy(update={"type": default_type})
                normalized.append(request)
        return normalized

    @property
    def requests(self) -> List[RequestConfig]:
        return self._requests

    @property
    def all_tags(self) -> List[str]:
        seen = []
        for tag in [*self.info.tags, *self.tags]:
            if tag not in seen:
                seen.append(tag)
        return seen

    def matches_host(self, hostname: str) -> bool:
        """Hosts allow-list check; an empty list applies to every host."""
        hosts = [h for h in self.hosts if h]
        if not hosts:
            return True
        return any(h in hostname for h in hosts)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "Template":
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if not data:
            raise ValueError(f"Empty template: {path}")
        if not isinstance(data, dict):
            raise ValueError(f"Template is not a mapping: {path}")
        data["file_path"] = str(path)
        return cls.model_validate(data)


class ProfileDocument(BaseModel):
    """Scan-profile selector document (not a template)."""

    severity: List[str] = Field(default_factory=list)
    type: List[str] = Field(default_factory=list)
    exclude_id: List[str] = Field(default_factory=list, alias="exclude-id")

    model_config = {"populate_by_name": True}

    @field_validator("severity", "type", "exclude_id", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> List[str]:
        return [str(v) for v in _as_list(value)]

    @property
    def is_profile(self) -> bool:
        return bool(self.severity or self.type or self.exclude_id)
