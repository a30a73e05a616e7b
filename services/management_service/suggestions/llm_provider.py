import json
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.logging_config import get_logger, log_external_api_call
from services.audit_service.analyzers.findings import SEOIssue
from services.audit_service.crawler.site_crawler import CrawledPage
from services.management_service.config import settings
from services.management_service.optimization_modes import MODE_SETTINGS
from services.management_service.suggestions.base import (
    ProposalSet,
    SuggestionProvider,
    SuggestionProviderError,
)
from services.management_service.suggestions.rule_based import TIERS, tier_confidences

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are an expert SEO consultant. For one SEO issue you write three remediation
proposals of increasing boldness: "safe" (minimal change), "balanced" and "aggressive" (maximum SEO impact).
Respect each profile's limits. Output a JSON object with the fields:
safe, balanced, aggressive (strings), reasoning (string), confidences (object with safe, balanced,
aggressive numbers between 0 and 1)."""


class LLMProposalResponse(BaseModel):
    safe: str = Field(min_length=1)
    balanced: str = Field(min_length=1)
    aggressive: str = Field(min_length=1)
    reasoning: str = "Model-generated proposals."
    confidences: Dict[str, float] = Field(default_factory=dict)


def _profile(tier) -> Dict[str, Any]:
    s = MODE_SETTINGS[tier]
    return {
        "title_max_length_change": s.title.max_length_change,
        "meta_description_max_length_change": s.meta_description.max_length_change,
        "call_to_action": s.meta_description.call_to_action_strength,
        "heading_restructuring": s.headings.restructuring_level,
        "keyword_density_target": s.keywords.density_target,
        "max_new_internal_links": s.internal_links.max_new_links,
        "content_rewrite": s.content.rewrite_level,
        "image_compression": s.images.compression_level,
    }


def build_user_message(issue: SEOIssue, page: Optional[CrawledPage]) -> str:
    context = {
        "issue": {
            "type": issue.type,
            "category": issue.category,
            "title": issue.title,
            "description": issue.description,
            "current_value": issue.current_value or "Not set",
            "rule_suggestion": issue.suggested_value,
            "page_url": issue.page_url,
        },
        "page": {
            "title": page.title if page else None,
            "h1": page.h1 if page else [],
            "meta_description": page.meta_description if page else None,
            "content_preview": (page.body_text or "")[:500] if page else None,
        },
        "profiles": {tier.value: _profile(tier) for tier in TIERS},
    }
    return f"<context>\n{json.dumps(context, indent=2)}\n</context>\n\nWrite the three proposals."


class LLMSuggestionProvider(SuggestionProvider):
    """Chat-completions backed provider (OpenAI-compatible API)."""

    name = "llm"

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: Optional[float] = None,
    ):
        if not api_key:
            raise ValueError("llm api key is not configured")
        self.api_key = api_key
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.model = model or settings.llm_model
        self.timeout_s = timeout_s or settings.llm_timeout_s
        self.client = client

    @retry(
        stop=stop_after_attempt(settings.llm_max_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((httpx.TransportError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _post(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> Dict[str, Any]:
        r = await client.post(
            f"{self.base_url}/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout_s,
        )
        r.raise_for_status()
        return r.json()

    async def _complete(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.client is not None:
            return await self._post(self.client, payload)
        async with httpx.AsyncClient() as client:
            return await self._post(client, payload)

    async def generate_proposals(self, issue: SEOIssue, page_context: Optional[CrawledPage] = None) -> ProposalSet:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_message(issue, page_context)},
            ],
            "response_format": {"type": "json_object"},
            "max_tokens": 600,
            "temperature": settings.llm_temperature,
        }

        started = time.perf_counter()
        try:
            data = await self._complete(payload)
            content = data["choices"][0]["message"]["content"]
            parsed = LLMProposalResponse.model_validate_json(content)
        except httpx.HTTPStatusError as e:
            log_external_api_call(logger, "llm", "chat/completions", time.perf_counter() - started, e.response.status_code, error=e)
            raise SuggestionProviderError(f"llm returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            log_external_api_call(logger, "llm", "chat/completions", time.perf_counter() - started, None, error=e)
            raise SuggestionProviderError(f"llm request failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError, ValidationError) as e:
            raise SuggestionProviderError(f"llm response could not be parsed: {e}") from e

        log_external_api_call(logger, "llm", "chat/completions", time.perf_counter() - started, 200)

        defaults = tier_confidences(issue)
        confidences = {
            tier: max(0.0, min(1.0, float(parsed.confidences.get(tier, default))))
            for tier, default in defaults.items()
        }
        return ProposalSet(
            safe=parsed.safe.strip(),
            balanced=parsed.balanced.strip(),
            aggressive=parsed.aggressive.strip(),
            reasoning=parsed.reasoning,
            confidences=confidences,
            source=self.name,
        )
