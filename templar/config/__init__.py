"""Configuration models for template scanning.

This package re-exports all commonly used classes for convenient importing.
"""

# Common enumerations
from templar.config.common import (
    DNS_RECORD_TYPES,
    Condition,
    ExtractorType,
    MatcherType,
    RequestType,
    SeverityLevel,
)

# Template configuration
from templar.config.template import (
    ExtractorConfig,
    MatcherConfig,
    PreCondition,
    ProfileDocument,
    RequestConfig,
    Template,
    TemplateInfo,
)

# Operator settings
from templar.config.settings import AdvancedSettings

# Scan outputs
from templar.config.scan import (
    CheckResult,
    ScanReport,
    ScanStats,
    TemplateMatch,
)

__all__ = [
    # Enums
    "DNS_RECORD_TYPES",
    "Condition",
    "ExtractorType",
    "MatcherType",
    "RequestType",
    "SeverityLevel",
    # Template
    "ExtractorConfig",
    "MatcherConfig",
    "PreCondition",
    "ProfileDocument",
    "RequestConfig",
    "Template",
    "TemplateInfo",
    # Settings
    "AdvancedSettings",
    # Scan
    "CheckResult",
    "ScanReport",
    "ScanStats",
    "TemplateMatch",
]
