from typing import Optional

from config.logging_config import get_logger
from services.audit_service.analyzers.findings import SEOIssue
from services.audit_service.crawler.cancellation import AuditCancelledError
from services.audit_service.crawler.site_crawler import CrawledPage
from services.management_service.config import Settings, settings as default_settings
from services.management_service.suggestions.base import (
    FALLBACK_CONFIDENCE,
    ProposalSet,
    SuggestionProvider,
)
from services.management_service.suggestions.llm_provider import LLMSuggestionProvider
from services.management_service.suggestions.rule_based import RuleBasedSuggestionProvider

logger = get_logger(__name__)


class FallbackSuggestionProvider(SuggestionProvider):
    """Wraps a primary provider; a failed call falls back to the rule-based one for that issue only."""

    name = "fallback"

    def __init__(self, primary: SuggestionProvider, fallback: Optional[SuggestionProvider] = None):
        self.primary = primary
        self.fallback = fallback or RuleBasedSuggestionProvider()

    async def generate_proposals(self, issue: SEOIssue, page_context: Optional[CrawledPage] = None) -> ProposalSet:
        try:
            return await self.primary.generate_proposals(issue, page_context)
        except AuditCancelledError:
            raise
        except Exception as e:
            logger.warning(
                f"Suggestion provider {self.primary.name} failed, using rule-based proposals: {e}",
                extra={"issue_type": issue.type, "page_url": issue.page_url},
            )

        proposals = await self.fallback.generate_proposals(issue, page_context)
        return proposals.capped(FALLBACK_CONFIDENCE, source="fallback")


def build_suggestion_provider(config: Optional[Settings] = None) -> SuggestionProvider:
    config = config or default_settings
    if not config.llm_api_key:
        return RuleBasedSuggestionProvider()

    primary = LLMSuggestionProvider(
        api_key=config.llm_api_key,
        base_url=config.llm_base_url,
        model=config.llm_model,
        timeout_s=config.llm_timeout_s,
    )
    return FallbackSuggestionProvider(primary)
