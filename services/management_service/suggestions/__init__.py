from services.management_service.suggestions.base import (
    FALLBACK_CONFIDENCE,
    ProposalSet,
    SuggestionProvider,
    SuggestionProviderError,
)
from services.management_service.suggestions.rule_based import RuleBasedSuggestionProvider, build_proposals
from services.management_service.suggestions.llm_provider import LLMSuggestionProvider
from services.management_service.suggestions.fallback import (
    FallbackSuggestionProvider,
    build_suggestion_provider,
)

__all__ = [
    "FALLBACK_CONFIDENCE",
    "ProposalSet",
    "SuggestionProvider",
    "SuggestionProviderError",
    "RuleBasedSuggestionProvider",
    "build_proposals",
    "LLMSuggestionProvider",
    "FallbackSuggestionProvider",
    "build_suggestion_provider",
]
