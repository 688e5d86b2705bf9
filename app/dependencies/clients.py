"""
FastAPI dependencies that hand out AI provider clients and the web probe.

Routers never construct clients themselves, so tests can swap in fakes via
``app.dependency_overrides``.
"""
from fastapi import HTTPException, status

from app.services.ai_clients import (
    AIProviderError,
    AnthropicClient,
    GatewayClient,
    PerplexityClient,
)
from app.services.web_probe import WebProbe


def get_perplexity_client() -> PerplexityClient:
    return PerplexityClient.from_settings()


def get_gateway_client() -> GatewayClient:
    return GatewayClient.from_settings()


def get_anthropic_client() -> AnthropicClient:
    return AnthropicClient.from_settings()


def get_web_probe() -> WebProbe:
    return WebProbe()


def provider_http_error(exc: AIProviderError) -> HTTPException:
    """
    Translate a provider failure into the HTTP error returned to the caller.

    Upstream rate limiting (429) and exhausted credits (402) are passed
    through; anything else is a 502.
    """
    if exc.status_code == 429:
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
        )
    if exc.status_code == 402:
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail="AI credits exhausted.",
        )
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
