"""Data extractors for capturing values from matched responses.

Extractors run once a request has matched and write the first value they find
into the per-target :class:`~templar.variables.VariableScope`, where later
requests of the same template pick it up through ``{{name}}`` substitution.
"""

import base64
import binascii
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from lxml import etree
from lxml import html as lxml_html

from templar.config import ExtractorConfig, ExtractorType
from templar.matchers import compile_regex
from templar.responses import MatchContext, load_json, lookup_json_path, part_text
from templar.utils import logger as default_logger
from templar.variables import VariableScope


class ExtractionResult:
    """Result of an extraction operation."""

    def __init__(self, name: str, value: Optional[str], success: bool = True):
        self.name = name
        self.value = value
        self.success = success

    def __bool__(self) -> bool:
        return self.success and self.value is not None


def decode_base64(value: str) -> str:
    """Standard base64 decode; the input is returned unchanged when it is not base64."""
    try:
        return base64.b64decode(value, validate=True).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return value


class Extractor(ABC):
    """Abstract base class for data extractors."""

    def __init__(self, config: ExtractorConfig):
        self.config = config
        self.name = config.name

    @abstractmethod
    def find(self, ctx: MatchContext) -> Optional[str]:
        """Return the first candidate value, or None."""

    def extract(self, ctx: MatchContext) -> ExtractionResult:
        value = self.find(ctx)
        if value is None:
            return ExtractionResult(self.name, None, False)
        if self.config.base64:
            value = decode_base64(value)
        return ExtractionResult(self.name, value, True)


class RegexExtractor(Extractor):
    """Extract a capture group from the first matching pattern.

    ``group`` picks the capture group when it exists; without it the first
    capture group is used if the pattern has one, else the whole match.
    """

    def find(self, ctx: MatchContext) -> Optional[str]:
        text = part_text(ctx, self.config.part)
        for pattern in self.config.regex:
            match = compile_regex(pattern, self.config.nocase).search(text)
            if not match:
                continue
            return match.group(self._group_index(match))
        return None

    def _group_index(self, match: "re.Match[str]") -> int:
        groups = len(match.groups())
        if self.config.group is not None:
            return self.config.group if 0 <= self.config.group <= groups else 0
        return 1 if groups else 0


class XPathExtractor(Extractor):
    """Extract the text (or an attribute) of the first selected node."""

    def find(self, ctx: MatchContext) -> Optional[str]:
        content = ctx.content
        if not content.strip():
            return None
        try:
            doc = lxml_html.fromstring(content)
        except (etree.ParserError, ValueError):
            return None

        for expr in self.config.xpath:
            try:
                found = doc.xpath(expr)
            except etree.XPathError as e:
                raise ValueError(f"invalid xpath {expr!r}: {e}") from e
            if not isinstance(found, list):
                found = [found]
            for element in found:
                value = self._node_value(element)
                if value:
                    return value
        return None

    def _node_value(self, element: Any) -> Optional[str]:
        if isinstance(element, etree._Element):
            if self.config.attribute:
                return element.get(self.config.attribute)
            return element.text_content().strip()
        if element is None:
            return None
        return str(element)


class JsonExtractor(Extractor):
    """Extract the value at a dot path of a JSON body."""

    def find(self, ctx: MatchContext) -> Optional[str]:
        if not self.config.jsonpath or not ctx.content:
            return None
        data = load_json(ctx.content)
        if data is None:
            return None
        value = lookup_json_path(data, self.config.jsonpath)
        if value is None:
            return None
        if isinstance(value, (dict, list)):
            return json.dumps(value, separators=(",", ":"))
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)


def create_extractor(config: ExtractorConfig) -> Extractor:
    """Create an extractor from configuration.

    Raises:
        ValueError: If extractor type is unknown
    """
    if config.type == ExtractorType.REGEX:
        return RegexExtractor(config)
    elif config.type == ExtractorType.XPATH:
        return XPathExtractor(config)
    elif config.type == ExtractorType.JSONPATH:
        return JsonExtractor(config)
    else:
        raise ValueError(f"Unknown extractor type: {config.type}")


def run_extractors(
    extractors: List[ExtractorConfig],
    ctx: MatchContext,
    scope: VariableScope,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, str]:
    """Run every extractor and store what it finds in ``scope``.

    A broken extractor is logged and skipped; the others still run.

    Returns:
        Dictionary mapping extractor names to extracted values
    """
    logger = logger or default_logger
    results = {}

    for config in extractors:
        try:
            result = create_extractor(config).extract(ctx)
        except (re.error, ValueError) as e:
            logger.error(f"Extractor {config.name} failed: {e}")
            continue
        if result:
            scope.set(result.name, result.value)
            results[result.name] = result.value
            logger.debug(f"Extracted {result.name}={result.value!r}")

    return results
