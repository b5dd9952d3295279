from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class TemplateMatch(BaseModel):
    target: str
    template_id: str
    name: str = ""
    severity: str = ""


class ScanStats(BaseModel):
    """Aggregate counters reported while a scan is running."""

    targets_loaded: int = 0
    processed: int = 0
    successes: int = 0
    errors: int = 0
    total_duration_ms: float = 0.0

    @property
    def avg_duration_ms(self) -> float:
        if not self.processed:
            return 0.0
        return self.total_duration_ms / self.processed

    def format(self) -> str:
        return (
            "Statistics:\n"
            f"Targets loaded: {self.targets_loaded}\n"
            f"Processed: {self.processed}\n"
            f"Successes: {self.successes}\n"
            f"Errors: {self.errors}\n"
            f"Avg time (ms): {self.avg_duration_ms:.0f}"
        )


class CheckResult(BaseModel):
    """Outcome of checking every template against a single URL."""

    url: str
    status: str = "ok"
    matched: List[TemplateMatch] = Field(default_factory=list)
    checked: int = 0
    total: int = 0
    errors: List[str] = Field(default_factory=list)
    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def matched_ids(self) -> List[str]:
        return [m.template_id for m in self.matched]

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"


class ScanReport(BaseModel):
    """Batch scan results: matched template IDs per target plus counters."""

    templates_loaded: int = 0
    results: Dict[str, List[str]] = Field(default_factory=dict)
    stats: ScanStats = Field(default_factory=ScanStats)
    errors: List[str] = Field(default_factory=list)
    cancelled: bool = False
    duration_seconds: float = 0.0

    def add_match(self, target: str, template_id: str) -> None:
        self.results.setdefault(target, []).append(template_id)

    def add_error(self, error: str) -> None:
        self.errors.append(error)

    @property
    def match_count(self) -> int:
        return sum(len(ids) for ids in self.results.values())
