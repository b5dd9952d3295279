"""Common enumerations used across template configuration."""

from enum import Enum


class SeverityLevel(str, Enum):
    """Impact level declared by a template."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"
    UNKNOWN = "unknown"


class RequestType(str, Enum):
    """Protocol a request block is executed with."""

    HTTP = "http"
    DNS = "dns"
    NETWORK = "network"
    HEADLESS = "headless"


# DNS record names some templates put directly in the request "type" field
DNS_RECORD_TYPES = ("A", "AAAA", "CNAME", "NS", "TXT", "MX", "CAA", "DS", "PTR", "SOA")


class MatcherType(str, Enum):
    STATUS = "status"
    WORD = "word"
    REGEX = "regex"
    SIZE = "size"
    DLENGTH = "dlength"
    BINARY = "binary"
    XPATH = "xpath"
    JSON = "json"
    DNS = "dns"
    NETWORK = "network"
    HEADLESS = "headless"
    DSL = "dsl"


class ExtractorType(str, Enum):
    REGEX = "regex"
    XPATH = "xpath"
    JSONPATH = "jsonpath"


class Condition(str, Enum):
    """Boolean combination of matcher (or word/DSL) results."""

    AND = "and"
    OR = "or"

    @classmethod
    def parse(cls, value) -> "Condition":
        """Case-normalize a condition string; anything but "or" is AND."""
        if isinstance(value, Condition):
            return value
        if value and str(value).strip().lower() == "or":
            return cls.OR
        return cls.AND
