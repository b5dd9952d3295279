"""Template scanner module.

This package contains the template execution engine, flow evaluation and the
orchestration of checks and batch scans.
"""

from templar.scanner.engine import (
    TargetCheck,
    TemplateEngine,
    find_matching_templates,
    match_template,
)
from templar.scanner.flow import FlowStep, parse_flow
from templar.scanner.orchestrator import check_url, run_scan

__all__ = [
    "FlowStep",
    "TargetCheck",
    "TemplateEngine",
    "check_url",
    "find_matching_templates",
    "match_template",
    "parse_flow",
    "run_scan",
]
