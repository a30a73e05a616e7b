from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Optional

from services.audit_service.analyzers.findings import SEOIssue
from services.audit_service.crawler.site_crawler import CrawledPage
from services.management_service.optimization_modes import OptimizationMode, parse_mode

FALLBACK_CONFIDENCE = 0.5

RISK_CONFIDENCE_FACTOR = {
    "low": 1.0,
    "medium": 0.9,
    "high": 0.75,
}


class SuggestionProviderError(Exception):
    pass


@dataclass(frozen=True)
class ProposalSet:
    safe: str
    balanced: str
    aggressive: str
    reasoning: str
    confidences: dict[str, float] = field(default_factory=dict)
    source: str = "rule_based"

    def proposal_for(self, mode: OptimizationMode | str) -> str:
        return getattr(self, parse_mode(mode).value)

    def confidence_for(self, mode: OptimizationMode | str) -> float:
        return float(self.confidences.get(parse_mode(mode).value, 0.0))

    def capped(self, ceiling: float, source: str) -> "ProposalSet":
        confidences = {tier: min(value, ceiling) for tier, value in self.confidences.items()}
        return replace(self, confidences=confidences, source=source)


class SuggestionProvider(ABC):
    """Produces three risk-tiered remediation proposals for one issue.

    All three tiers are always computed; the run's optimization mode only
    decides which one is selected downstream.
    """

    name = "base"

    @abstractmethod
    async def generate_proposals(self, issue: SEOIssue, page_context: Optional[CrawledPage] = None) -> ProposalSet:
        raise NotImplementedError
