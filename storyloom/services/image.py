"""
Image Generation Service: image generation API integration
"""

import httpx
import asyncio
import structlog

from storyloom.core.config import settings
from storyloom.core.errors import ImageError, ErrorCode
from storyloom.core.media import split_data_uri
from storyloom.models.dto import ImageGeneration, ImagePrompt

logger = structlog.get_logger()

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

# 1x1 PNG
MOCK_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_LOW_AND_ABOVE"},
]


async def generate_image(prompt: ImagePrompt) -> ImageGeneration:
    """
    Generate one illustration

    Returns:
        ImageGeneration with a data URI, or with only a note when the
        provider answered without an image
    """
    if settings.image_provider == "gemini":
        return await _generate_gemini(prompt)
    elif settings.image_provider == "mock":
        return await _generate_mock(prompt)
    else:
        raise ValueError(f"Unknown image provider: {settings.image_provider}")


def _build_parts(prompt: ImagePrompt) -> list[dict]:
    text = prompt.text
    if prompt.constraints:
        text = f"{text}\nAvoid: {', '.join(prompt.constraints)}."

    parts = []
    if prompt.reference_image:
        mime_type, data = split_data_uri(prompt.reference_image)
        parts.append({"inline_data": {"mime_type": mime_type, "data": data}})
    parts.append({"text": text})
    return parts


async def _generate_gemini(prompt: ImagePrompt) -> ImageGeneration:
    """Generate image using Gemini image output (accepts a reference image)"""
    if not settings.image_api_key:
        raise ImageError(
            ErrorCode.IMAGE_FAILED,
            "Gemini API key is not configured. Set the IMAGE_API_KEY environment variable.",
            page=prompt.page,
        )

    async with httpx.AsyncClient(timeout=settings.image_timeout) as client:
        response = await client.post(
            GEMINI_URL.format(model=settings.image_model),
            headers={
                "x-goog-api-key": settings.image_api_key,
                "Content-Type": "application/json",
            },
            json={
                "contents": [{"role": "user", "parts": _build_parts(prompt)}],
                "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
                "safetySettings": SAFETY_SETTINGS,
            },
        )

        if response.status_code == 429:
            raise ImageError(
                ErrorCode.IMAGE_RATE_LIMIT, "Gemini rate limited", page=prompt.page
            )
        if response.status_code != 200:
            logger.error(
                "Gemini image error",
                status=response.status_code,
                body=response.text[:500],
            )
            code = (
                ErrorCode.IMAGE_TIMEOUT
                if response.status_code >= 500
                else ErrorCode.IMAGE_FAILED
            )
            raise ImageError(
                code, f"Gemini API error: {response.status_code}", page=prompt.page
            )

        result = response.json()

    notes = []
    for candidate in result.get("candidates", []):
        for part in candidate.get("content", {}).get("parts", []):
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                return ImageGeneration(
                    image_data_uri=f"data:{mime_type};base64,{inline['data']}",
                    note=" ".join(notes) or None,
                )
            if part.get("text"):
                notes.append(part["text"])

    block_reason = result.get("promptFeedback", {}).get("blockReason")
    if block_reason:
        notes.append(f"blocked: {block_reason}")
    return ImageGeneration(note=" ".join(notes) or "No image in response")


async def _generate_mock(prompt: ImagePrompt) -> ImageGeneration:
    """Mock image generation for testing"""
    await asyncio.sleep(0.01)  # Simulate API delay
    return ImageGeneration(
        image_data_uri=f"data:image/png;base64,{MOCK_PNG_BASE64}",
        note=f"mock page {prompt.page}",
    )
