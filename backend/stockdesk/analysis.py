from __future__ import annotations

import json
import logging

from openai import AsyncOpenAI, OpenAIError, RateLimitError
from pydantic import ValidationError

from stockdesk.config.settings import settings
from stockdesk.errors import (
    MalformedPayloadError,
    MissingApiKeyError,
    ProviderError,
    RateLimitedError,
)
from stockdesk.schemas.analysis import AnalysisRequest, AnalysisResult

logger = logging.getLogger(__name__)

PROVIDER = "openai"

_PROMPT_TEMPLATE = """Analyze the following stock data and provide insights:
Symbol: {symbol}
Current Price: ${price}
Change: {change} ({change_percent}%)
Company: {name}
Sector: {sector}
Industry: {industry}
Description: {description}

Please provide:
1. A sentiment analysis (positive, neutral, or negative)
2. A detailed analysis of the stock's performance and future outlook
3. 2-3 recent news headlines that might be affecting the stock price

Format the response as JSON with the following structure:
{{
  "sentiment": "positive|neutral|negative",
  "aiInsight": "detailed analysis here",
  "news": [
    {{
      "title": "news headline",
      "source": "news source",
      "date": "YYYY-MM-DD"
    }}
  ]
}}"""


def build_prompt(request: AnalysisRequest) -> str:
    stock = request.stock_data
    company = request.company_overview
    return _PROMPT_TEMPLATE.format(
        symbol=request.symbol.upper(),
        price=stock.price,
        change=stock.change,
        change_percent=stock.change_percent,
        name=company.name,
        sector=company.sector,
        industry=company.industry,
        description=company.description,
    )


def _client() -> AsyncOpenAI:
    api_key = settings.providers.openai_api_key
    if not api_key:
        raise MissingApiKeyError(PROVIDER)
    return AsyncOpenAI(api_key=api_key)


def parse_result(content: str | None) -> AnalysisResult:
    try:
        return AnalysisResult.model_validate(json.loads(content or "{}"))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise MalformedPayloadError(PROVIDER, "analysis response did not match the expected shape") from exc


async def generate_analysis(request: AnalysisRequest) -> AnalysisResult:
    client = _client()
    logger.info("Requesting analysis for %s", request.symbol.upper())
    try:
        completion = await client.chat.completions.create(
            model=settings.providers.openai_model,
            messages=[{"role": "user", "content": build_prompt(request)}],
            response_format={"type": "json_object"},
        )
    except RateLimitError as exc:
        raise RateLimitedError(PROVIDER, "rate limit exceeded") from exc
    except OpenAIError as exc:
        raise ProviderError(PROVIDER, str(exc)) from exc
    return parse_result(completion.choices[0].message.content)


async def chat(message: str) -> str | None:
    """Send one user message to the chat model and return its reply text."""
    client = _client()
    try:
        completion = await client.chat.completions.create(
            model=settings.providers.openai_chat_model,
            messages=[{"role": "user", "content": message}],
        )
    except RateLimitError as exc:
        raise RateLimitedError(PROVIDER, "rate limit exceeded") from exc
    except OpenAIError as exc:
        raise ProviderError(PROVIDER, str(exc)) from exc
    return completion.choices[0].message.content
