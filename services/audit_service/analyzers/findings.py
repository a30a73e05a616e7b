from dataclasses import dataclass
from enum import Enum


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_PENALTY = {
    Severity.CRITICAL.value: 15,
    Severity.HIGH.value: 10,
    Severity.MEDIUM.value: 5,
    Severity.LOW.value: 2,
}

SEVERITY_RANK = {
    Severity.CRITICAL.value: 0,
    Severity.HIGH.value: 1,
    Severity.MEDIUM.value: 2,
    Severity.LOW.value: 3,
}


@dataclass(frozen=True)
class SEOIssue:
    """One finding on one page.

    ``severity`` rates the impact of the problem; ``risk_level`` rates the blast
    radius of the fix. Both are decided by the rule that produced the issue.
    """

    type: str
    category: str
    title: str
    description: str
    severity: str
    risk_level: str
    page_url: str
    auto_fixable: bool
    current_value: str = ""
    suggested_value: str = ""
