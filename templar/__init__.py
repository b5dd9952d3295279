"""templar - Template-driven fingerprint and vulnerability matching engine.

Runs declarative YAML templates against targets over several protocols:
- HTTP requests with retries, redirects and per-host rate limiting
- DNS record lookups and raw TCP/UDP exchanges
- Headless browser rendering, with offline matching of the root page
"""

__version__ = "0.1.0"

# Core modules
from templar.config import (
    AdvancedSettings,
    CheckResult,
    ExtractorConfig,
    MatcherConfig,
    RequestConfig,
    RequestType,
    ScanReport,
    SeverityLevel,
    Template,
    TemplateInfo,
)

from templar.errors import (
    FlowError,
    RequestError,
    TemplarError,
    TemplateLoadError,
)

from templar.loader import load_template, load_templates

from templar.scanner import (
    TemplateEngine,
    check_url,
    find_matching_templates,
    match_template,
    run_scan,
)

from templar.services import ScanServices

# Analysis modules
from templar.extractors import (
    ExtractionResult,
    Extractor,
    create_extractor,
    run_extractors,
)

from templar.matchers import (
    MatchResult,
    Matcher,
    check_matchers,
    create_matcher,
)

from templar.variables import VariableScope, substitute

__all__ = [
    # Version
    "__version__",
    # Config
    "AdvancedSettings",
    "CheckResult",
    "ExtractorConfig",
    "MatcherConfig",
    "RequestConfig",
    "RequestType",
    "ScanReport",
    "SeverityLevel",
    "Template",
    "TemplateInfo",
    # Errors
    "FlowError",
    "RequestError",
    "TemplarError",
    "TemplateLoadError",
    # Engine
    "ScanServices",
    "TemplateEngine",
    "check_url",
    "find_matching_templates",
    "load_template",
    "load_templates",
    "match_template",
    "run_scan",
    # Extractors
    "ExtractionResult",
    "Extractor",
    "create_extractor",
    "run_extractors",
    # Matchers
    "MatchResult",
    "Matcher",
    "check_matchers",
    "create_matcher",
    # Variables
    "VariableScope",
    "substitute",
]
