"""
LLM Service: text generation (story rewrite, dialogue script, image fit check)
"""

import json
import re
from pathlib import Path
from typing import Optional

import httpx
from jinja2 import Environment, FileSystemLoader
import structlog

from storyloom.core.config import settings
from storyloom.core.errors import LLMError, ErrorCode
from storyloom.models.dto import DialogueDraft, ImageFitVerdict, RewrittenStory

logger = structlog.get_logger()

# Jinja2 environment for prompt templates
PROMPTS_DIR = Path(__file__).parent.parent / "prompts"
jinja_env = Environment(loader=FileSystemLoader(PROMPTS_DIR))

REWRITE_ERROR_SENTINEL = (
    "Error: AI could not generate the story at this time. "
    "Please try adjusting your prompt or try again later."
)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


def render_prompt(template_name: str, **kwargs) -> str:
    """Render a prompt template with given variables"""
    template = jinja_env.get_template(template_name)
    return template.render(**kwargs)


async def call_llm(
    system_prompt: str,
    user_prompt: str,
    max_tokens: int = 2000,
    temperature: float = 0.7,
) -> str:
    """
    Call LLM API and return response text

    Supports: OpenAI, Anthropic, Gemini, Mock
    """
    if settings.llm_provider == "openai":
        return await _call_openai(system_prompt, user_prompt, max_tokens, temperature)
    elif settings.llm_provider == "anthropic":
        return await _call_anthropic(
            system_prompt, user_prompt, max_tokens, temperature
        )
    elif settings.llm_provider == "gemini":
        return await _call_gemini(system_prompt, user_prompt, max_tokens, temperature)
    elif settings.llm_provider == "mock":
        return await _call_mock(system_prompt, user_prompt, max_tokens, temperature)
    else:
        raise ValueError(f"Unknown LLM provider: {settings.llm_provider}")


def _require_key(provider: str):
    if not settings.llm_api_key:
        raise LLMError(
            ErrorCode.LLM_FAILED,
            f"{provider} API key is not configured. Set the LLM_API_KEY environment variable.",
        )


def _raise_for_status(provider: str, response: httpx.Response):
    if response.status_code == 200:
        return
    logger.error(
        f"{provider} API error", status=response.status_code, body=response.text[:500]
    )
    code = (
        ErrorCode.LLM_TIMEOUT
        if response.status_code == 429 or response.status_code >= 500
        else ErrorCode.LLM_FAILED
    )
    raise LLMError(code, f"{provider} API error: {response.status_code}")


async def _call_openai(
    system_prompt: str,
    user_prompt: str,
    max_tokens: int,
    temperature: float,
) -> str:
    """Call OpenAI API"""
    _require_key("OpenAI")

    async with httpx.AsyncClient(timeout=settings.llm_timeout) as client:
        response = await client.post(
            "https://api.openai.com/v1/chat/completions",
            headers={
                "Authorization": f"Bearer {settings.llm_api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": settings.llm_model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "max_tokens": max_tokens,
                "temperature": temperature,
                "response_format": {"type": "json_object"},
            },
        )
        _raise_for_status("OpenAI", response)

        data = response.json()
        return data["choices"][0]["message"]["content"]


async def _call_anthropic(
    system_prompt: str,
    user_prompt: str,
    max_tokens: int,
    temperature: float,
) -> str:
    """Call Anthropic API"""
    _require_key("Anthropic")

    async with httpx.AsyncClient(timeout=settings.llm_timeout) as client:
        response = await client.post(
            "https://api.anthropic.com/v1/messages",
            headers={
                "x-api-key": settings.llm_api_key,
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
            json={
                "model": settings.llm_model,
                "system": system_prompt,
                "messages": [
                    {"role": "user", "content": user_prompt},
                ],
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
        )
        _raise_for_status("Anthropic", response)

        data = response.json()
        return data["content"][0]["text"]


async def _call_gemini(
    system_prompt: str,
    user_prompt: str,
    max_tokens: int,
    temperature: float,
) -> str:
    """Call Google Gemini generateContent API"""
    _require_key("Gemini")

    async with httpx.AsyncClient(timeout=settings.llm_timeout) as client:
        response = await client.post(
            GEMINI_URL.format(model=settings.llm_model),
            headers={
                "x-goog-api-key": settings.llm_api_key,
                "Content-Type": "application/json",
            },
            json={
                "systemInstruction": {"parts": [{"text": system_prompt}]},
                "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
                "generationConfig": {
                    "temperature": temperature,
                    "maxOutputTokens": max_tokens,
                    "responseMimeType": "application/json",
                },
            },
        )
        _raise_for_status("Gemini", response)

        data = response.json()
        candidates = data.get("candidates") or []
        if not candidates:
            raise LLMError(ErrorCode.LLM_FAILED, "Gemini returned no candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(p.get("text", "") for p in parts)


def _between(text: str, tag: str) -> str:
    match = re.search(rf"<{tag}>\s*(.*?)\s*</{tag}>", text, re.DOTALL)
    return match.group(1).strip() if match else ""


async def _call_mock(
    system_prompt: str,
    user_prompt: str,
    max_tokens: int,
    temperature: float,
) -> str:
    """Mock LLM for testing"""
    import asyncio

    await asyncio.sleep(0.01)  # Simulate API latency

    # Detect prompt type from the system prompt
    if "rewrites stories" in system_prompt:
        story = _between(user_prompt, "story") or "a small friend went on an adventure."
        return json.dumps(
            {
                "rewritten_story": "\n\n".join(
                    [
                        f"Once upon a time, something wonderful happened. {story}",
                        "Along the way, new friends came to help. Everyone shared what they had and smiled.",
                        "When the sun went down, it was time to go home. It had been a wonderful day. The end.",
                    ]
                )
            }
        )
    elif "scriptwriter" in system_prompt:
        page = _between(user_prompt, "page")
        sentences = [s for s in re.split(r"(?<=[.!?])\s+", page) if s.strip()]
        lines = []
        for sentence in sentences:
            speaker = "Character" if sentence.lstrip().startswith(('"', "“")) else "Narrator"
            lines.append(f"{speaker}: {sentence.strip()}")
        return json.dumps({"dialogue_text": "\n".join(lines)})
    elif "evaluating" in system_prompt:
        return json.dumps({"image_matches_text": True})
    else:
        return json.dumps({"result": "mock response"})


def parse_json_response(text: str, expected_type: type):
    """Parse JSON response and validate against expected type"""
    try:
        # Clean up response (remove markdown code blocks if present)
        text = text.strip()
        if text.startswith("```json"):
            text = text[7:]
        if text.startswith("```"):
            text = text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

        data = json.loads(text)
        return expected_type.model_validate(data)
    except json.JSONDecodeError as e:
        logger.error("JSON parse error", error=str(e), text=text[:500])
        raise LLMError(
            ErrorCode.LLM_JSON_INVALID,
            f"JSON parse failed: {str(e)}",
            raw_output=text[:500],
        ) from e
    except Exception as e:
        logger.error("Validation error", error=str(e))
        raise LLMError(
            ErrorCode.LLM_JSON_INVALID,
            f"Response validation failed: {str(e)}",
            raw_output=text[:500],
        ) from e


# ==================== Public API ====================


async def call_story_rewrite(
    story_text: str, child_age: int, learning_prompt: Optional[str] = None
) -> str:
    """
    Rewrite the parent's prompt into a child-friendly story.

    Returns the story text, or REWRITE_ERROR_SENTINEL when the model answered
    without a story. Callers must check for the sentinel.
    """
    system_prompt = render_prompt("rewrite_story.system.jinja2")
    user_prompt = render_prompt(
        "rewrite_story.user.jinja2",
        story_text=story_text,
        child_age=child_age,
        learning_prompt=learning_prompt,
    )

    response = await call_llm(
        system_prompt, user_prompt, max_tokens=3000, temperature=0.8
    )
    result = parse_json_response(response, RewrittenStory)
    if not result.rewritten_story.strip():
        logger.error("Story rewrite returned no story")
        return REWRITE_ERROR_SENTINEL
    return result.rewritten_story


async def call_dialogue_transformation(page_text: str, child_age: int) -> DialogueDraft:
    """Rewrite one page as a Narrator/Character script"""
    system_prompt = render_prompt("dialogue.system.jinja2")
    user_prompt = render_prompt(
        "dialogue.user.jinja2", page_text=page_text, child_age=child_age
    )

    response = await call_llm(
        system_prompt, user_prompt, max_tokens=1200, temperature=0.5
    )
    return parse_json_response(response, DialogueDraft)


async def call_image_fit_check(
    page_text: str, child_age: int, style_hint: Optional[str] = None
) -> bool:
    """Ask whether a scene-only illustration suits the page"""
    system_prompt = render_prompt("image_fit.system.jinja2")
    user_prompt = render_prompt(
        "image_fit.user.jinja2",
        page_text=page_text,
        child_age=child_age,
        style_hint=style_hint,
    )

    response = await call_llm(
        system_prompt, user_prompt, max_tokens=100, temperature=0.0
    )
    return parse_json_response(response, ImageFitVerdict).image_matches_text
