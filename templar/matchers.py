"""Response matchers for template evaluation."""

import logging
import operator
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from lxml import etree
from lxml import html as lxml_html

from templar import dsl
from templar.config import Condition, MatcherConfig, MatcherType, RequestConfig
from templar.errors import DSLError, TemplarError
from templar.responses import (
    MatchContext,
    header_text,
    load_json,
    lookup_json_path,
    part_bytes,
    part_size,
    part_text,
)
from templar.utils import logger as default_logger


@dataclass
class MatchResult:
    """Result of a matcher evaluation."""

    matched: bool
    evidence: Dict[str, Any] = field(default_factory=dict)
    message: str = ""


NO_MATCH = MatchResult(matched=False, message="not applicable")

_QUOTES = str.maketrans({
    "'": '"',
    "`": '"',
    "‘": '"',
    "’": '"',
    "“": '"',
    "”": '"',
})
_WHITESPACE = re.compile(r"\s+")

LENGTH_OPERATORS: Dict[str, Callable[[int, int], bool]] = {
    "==": operator.eq,
    "=": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


def normalize_text(text: str) -> str:
    """Collapse whitespace runs and unify quote characters."""
    return _WHITESPACE.sub(" ", text.translate(_QUOTES))


@lru_cache(maxsize=1024)
def compile_regex(pattern: str, nocase: bool = False) -> "re.Pattern[str]":
    flags = re.MULTILINE
    if nocase:
        flags |= re.IGNORECASE
    return re.compile(pattern, flags)


def decode_binary_pattern(pattern: str) -> bytes:
    """Hex strings are decoded to bytes; anything else is taken literally."""
    candidate = pattern.strip()
    if candidate and len(candidate) % 2 == 0 and re.fullmatch(r"[0-9a-fA-F]+", candidate):
        return bytes.fromhex(candidate)
    return pattern.encode("utf-8")


def combine(results: Sequence[bool], condition: Condition) -> bool:
    if condition == Condition.OR:
        return any(results)
    return all(results)


class Matcher:
    """Base matcher class."""

    def __init__(self, config: MatcherConfig):
        self.config = config
        self.condition = config.combine
        self.part = config.part

    def matches(self, ctx: MatchContext) -> MatchResult:
        """Check if the captured response matches. Override in subclass."""
        raise NotImplementedError


class StatusMatcher(Matcher):
    """Match HTTP status codes."""

    def matches(self, ctx: MatchContext) -> MatchResult:
        status = ctx.status_code
        if status is None:
            return NO_MATCH
        matched = status in self.config.status
        return MatchResult(
            matched=matched,
            evidence={"status": status, "expected": self.config.status},
            message=f"expected {self.config.status}, got {status}",
        )


class WordMatcher(Matcher):
    """Substring search over a response part, tolerant of whitespace and quote style."""

    def matches(self, ctx: MatchContext) -> MatchResult:
        if not ctx.has_content:
            return NO_MATCH

        content = normalize_text(part_text(ctx, self.part))
        words = [normalize_text(w) for w in self.config.words]
        if self.config.nocase:
            content = content.lower()
            words = [w.lower() for w in words]

        found = [w for w in words if w in content]
        if not words:
            matched = False
        elif self.condition == Condition.OR:
            matched = bool(found)
        else:
            matched = len(found) == len(words)

        return MatchResult(
            matched=matched,
            evidence={"found": found},
            message=f"part={self.part}, words={self.config.words}",
        )


class RegexMatcher(Matcher):
    """Any listed pattern found in the selected part is a hit."""

    def matches(self, ctx: MatchContext) -> MatchResult:
        if not ctx.has_content:
            return NO_MATCH

        content = part_text(ctx, self.part)
        invalid = []
        for pattern in self.config.regex:
            try:
                compiled = compile_regex(pattern, self.config.nocase)
            except re.error:
                invalid.append(pattern)
                continue
            if compiled.search(content):
                return MatchResult(
                    matched=True,
                    evidence={"pattern": pattern},
                    message=f"part={self.part}, regex={pattern}",
                )
        if invalid:
            raise ValueError(f"invalid regex {invalid}")
        return MatchResult(matched=False, message=f"no pattern matched in {self.part}")


def _length_operator(config: MatcherConfig) -> str:
    extra = config.model_extra or {}
    op = str(extra.get("operator") or config.condition or "==").strip()
    return op if op in LENGTH_OPERATORS else "=="


class SizeMatcher(Matcher):
    """Byte size of the selected part compared with ``size``."""

    def matches(self, ctx: MatchContext) -> MatchResult:
        if not ctx.has_content or self.config.size is None:
            return NO_MATCH
        op = _length_operator(self.config)
        size = part_size(ctx, self.part)
        matched = LENGTH_OPERATORS[op](size, self.config.size)
        return MatchResult(
            matched=matched,
            evidence={"size": size},
            message=f"part={self.part}, size {size} {op} {self.config.size}",
        )


class DataLengthMatcher(Matcher):
    """Character length of the selected part compared with ``dlength``."""

    def matches(self, ctx: MatchContext) -> MatchResult:
        if not ctx.has_content or self.config.dlength is None:
            return NO_MATCH
        op = _length_operator(self.config)
        length = len(part_text(ctx, self.part))
        matched = LENGTH_OPERATORS[op](length, self.config.dlength)
        return MatchResult(
            matched=matched,
            evidence={"length": length},
            message=f"part={self.part}, dlength {length} {op} {self.config.dlength}",
        )


class BinaryMatcher(Matcher):
    """Byte-sequence containment over the selected part."""

    def matches(self, ctx: MatchContext) -> MatchResult:
        if not ctx.has_content or not self.config.binary:
            return NO_MATCH
        data = part_bytes(ctx, self.part)
        hits = [decode_binary_pattern(p) in data for p in self.config.binary]
        return MatchResult(
            matched=combine(hits, self.condition),
            evidence={"hits": hits},
            message=f"part={self.part}, binary={self.config.binary}",
        )


class XPathMatcher(Matcher):
    """At least one node selected by any XPath expression."""

    def matches(self, ctx: MatchContext) -> MatchResult:
        content = ctx.content
        if not content.strip() or not self.config.xpath:
            return NO_MATCH
        try:
            doc = lxml_html.fromstring(content)
        except (etree.ParserError, ValueError):
            return MatchResult(matched=False, message="body is not HTML")

        for expr in self.config.xpath:
            try:
                found = doc.xpath(expr)
            except etree.XPathError as e:
                raise ValueError(f"invalid xpath {expr!r}: {e}") from e
            if _has_xpath_result(found):
                return MatchResult(matched=True, evidence={"xpath": expr}, message=f"xpath={expr}")
        return MatchResult(matched=False, message="no xpath selected a node")


def _has_xpath_result(found: Any) -> bool:
    if isinstance(found, list):
        return len(found) > 0
    if isinstance(found, bool):
        return found
    if isinstance(found, str):
        return bool(found)
    if isinstance(found, float):
        return found != 0
    return found is not None


class JsonMatcher(Matcher):
    """A value exists at the dot path in the JSON body."""

    def matches(self, ctx: MatchContext) -> MatchResult:
        if not ctx.content or self.config.jsonpath is None:
            return NO_MATCH
        data = load_json(ctx.content)
        if data is None:
            return MatchResult(matched=False, message="Response is not valid JSON")
        value = lookup_json_path(data, self.config.jsonpath)
        return MatchResult(
            matched=value is not None,
            evidence={"value": value},
            message=f"jsonpath={self.config.jsonpath}",
        )


class PayloadMatcher(Matcher):
    """Pattern, word, regex and binary search over a protocol-specific payload.

    Every criterion the matcher declares must hold. ``pattern`` is searched as a
    regular expression and falls back to a plain substring when it does not
    compile.
    """

    def payload(self, ctx: MatchContext) -> Optional[Union[str, bytes]]:
        raise NotImplementedError

    def matches(self, ctx: MatchContext) -> MatchResult:
        data = self.payload(ctx)
        if data is None:
            return NO_MATCH
        text = data.decode("latin-1") if isinstance(data, bytes) else data
        nocase = self.config.nocase

        checks = []
        if self.config.pattern:
            checks.append(_search_pattern(self.config.pattern, text, nocase))
        if self.config.words:
            haystack = text.lower() if nocase else text
            words = [w.lower() if nocase else w for w in self.config.words]
            checks.append(combine([w in haystack for w in words], self.condition))
        if self.config.regex:
            checks.append(any(compile_regex(p, nocase).search(text) for p in self.config.regex))
        if self.config.binary:
            raw = data if isinstance(data, bytes) else text.encode("latin-1", errors="replace")
            checks.append(combine(
                [decode_binary_pattern(p) in raw for p in self.config.binary], self.condition
            ))

        return MatchResult(
            matched=bool(checks) and all(checks),
            evidence={"checks": checks},
            message=f"type={self.config.type.value}, pattern={self.config.pattern}",
        )


def _search_pattern(pattern: str, text: str, nocase: bool) -> bool:
    try:
        return compile_regex(pattern, nocase).search(text) is not None
    except re.error:
        if nocase:
            return pattern.lower() in text.lower()
        return pattern in text


class DNSMatcher(PayloadMatcher):
    def payload(self, ctx: MatchContext) -> Optional[str]:
        return None if ctx.dns is None else ctx.dns.raw


class NetworkMatcher(PayloadMatcher):
    def payload(self, ctx: MatchContext) -> Optional[bytes]:
        return None if ctx.network is None else ctx.network.data


class HeadlessMatcher(PayloadMatcher):
    def payload(self, ctx: MatchContext) -> Optional[str]:
        return None if ctx.headless is None else ctx.headless.html


class DSLMatcher(Matcher):
    """Boolean expressions over ``status_code`` and ``body``.

    Expressions combine with the matcher's own condition. An expression that
    does not evaluate to a boolean raises :class:`~templar.errors.DSLError`.
    """

    def matches(self, ctx: MatchContext) -> MatchResult:
        if not ctx.has_content or not self.config.dsl:
            return NO_MATCH
        scope = dsl.build_scope(
            status_code=ctx.status_code or 0,
            body=ctx.content.decode("utf-8", errors="replace"),
            header=header_text(ctx.headers),
        )
        results = [dsl.evaluate(expr, scope) for expr in self.config.dsl]
        return MatchResult(
            matched=combine(results, self.condition),
            evidence={"results": results},
            message=f"dsl={self.config.dsl}",
        )


MATCHER_CLASSES: Dict[MatcherType, type] = {
    MatcherType.STATUS: StatusMatcher,
    MatcherType.WORD: WordMatcher,
    MatcherType.REGEX: RegexMatcher,
    MatcherType.SIZE: SizeMatcher,
    MatcherType.DLENGTH: DataLengthMatcher,
    MatcherType.BINARY: BinaryMatcher,
    MatcherType.XPATH: XPathMatcher,
    MatcherType.JSON: JsonMatcher,
    MatcherType.DNS: DNSMatcher,
    MatcherType.NETWORK: NetworkMatcher,
    MatcherType.HEADLESS: HeadlessMatcher,
    MatcherType.DSL: DSLMatcher,
}


def create_matcher(config: MatcherConfig) -> Matcher:
    """Create a matcher from configuration."""
    try:
        matcher_cls = MATCHER_CLASSES[config.type]
    except KeyError:
        raise ValueError(f"Unknown matcher type: {config.type}") from None
    return matcher_cls(config)


def check_single_matcher(
    config: MatcherConfig,
    ctx: MatchContext,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Evaluate one matcher; template errors count as no match and are logged."""
    logger = logger or default_logger
    try:
        result = create_matcher(config).matches(ctx)
    except DSLError as e:
        logger.error(f"DSL evaluation error: {e}")
        return False
    except (TemplarError, re.error, ValueError) as e:
        logger.error(f"Matcher type={config.type.value} failed: {e}")
        return False

    if result.matched:
        logger.debug(f"Matcher type={config.type.value} matched: {result.message}")
    return result.matched


def check_matchers(
    matchers: List[MatcherConfig],
    condition: Any,
    ctx: MatchContext,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Combine matcher results with AND or OR; an empty list always matches."""
    if not matchers:
        return True
    results = [check_single_matcher(m, ctx, logger) for m in matchers]
    return combine(results, Condition.parse(condition))


OFFLINE_MATCHER_TYPES = (MatcherType.WORD, MatcherType.REGEX)
ROOT_PATHS = {"", "/", "{{BaseURL}}", "{{BaseURL}}/", "{{RootURL}}", "{{RootURL}}/"}


def can_offline_match(matcher: MatcherConfig) -> bool:
    return matcher.type in OFFLINE_MATCHER_TYPES and matcher.part == "body"


def can_offline_match_request(request: RequestConfig) -> bool:
    """True when an already-fetched root page can stand in for this request.

    Every matcher must be a body word/regex check and the request must be a
    plain GET of the target's root page.
    """
    if not request.matchers:
        return False
    if not all(can_offline_match(m) for m in request.matchers):
        return False
    if request.method != "GET" or request.body:
        return False
    paths = [p.replace(" ", "") for p in request.path] or ["/"]
    return all(p in ROOT_PATHS for p in paths)


def match_offline_html(
    html: str,
    request: RequestConfig,
    logger: Optional[logging.Logger] = None,
    template_id: str = "",
) -> bool:
    """Evaluate a request's matchers against a pre-fetched page."""
    logger = logger or default_logger
    if not html:
        return False
    matched = check_matchers(
        request.matchers, request.matchers_condition, MatchContext.from_html(html), logger
    )
    if matched:
        logger.info(f"Template {template_id}, offline match on pre-fetched page")
    return matched
