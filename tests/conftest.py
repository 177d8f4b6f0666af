import asyncio
import os
from collections import defaultdict
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# Test environment
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["LLM_PROVIDER"] = "mock"
os.environ["IMAGE_PROVIDER"] = "mock"
os.environ["TTS_PROVIDER"] = "mock"
os.environ["ANIMATION_PROVIDER"] = "mock"
os.environ["LOG_JSON"] = "false"

from storyloom.core.config import Settings
from storyloom.core.database import Base
from storyloom.core.media import to_data_uri
from storyloom.models import db as _db_models  # noqa: F401  registers the jobs table
from storyloom.models.dto import (
    AnimationResult,
    DialogueDraft,
    GenerationRequest,
    ImageGeneration,
    SpeechResult,
)
from storyloom.services.capabilities import Capabilities


# Test DB engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


PAGE_ONE = (
    "Mila the little fox lived at the edge of a sunny meadow. Every morning she "
    "counted the red apples that fell from the old tree beside her den."
)
PAGE_TWO = (
    "One day her friend Bruno the badger came by with an empty basket. \"I have no "
    "apples at all,\" he said with a sigh. Mila looked at her big pile and smiled."
)
PAGE_THREE = (
    "Together they shared the apples, one for you and one for me, until both "
    "baskets were full. It was the best day of the whole summer."
)
STORY = "\n\n".join([PAGE_ONE, PAGE_TWO, PAGE_THREE])


def image_uri(page: int) -> str:
    return to_data_uri(f"image-{page}".encode(), "image/png")


def audio_uri(script: str) -> str:
    return to_data_uri(script.encode(), "audio/mpeg")


GIF_URI = "data:image/gif;base64,R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7"


class FakeProviders:
    """Scriptable capability fakes that record every call"""

    def __init__(self, story: str = STORY):
        self.story = story
        self.calls = defaultdict(list)
        self.rewrite_error = None
        self.image_errors = {}  # page -> exception
        self.image_outputs = {}  # page -> ImageGeneration
        self.verify_error = None
        self.dialogue_errors = {}  # page text -> exception
        self.speech_errors = {}  # script -> exception
        self.animation_note = None
        self.latency = 0.0
        self.in_flight = defaultdict(int)
        self.max_in_flight = defaultdict(int)

    async def _enter(self, name: str):
        self.in_flight[name] += 1
        self.max_in_flight[name] = max(self.max_in_flight[name], self.in_flight[name])
        await asyncio.sleep(self.latency)
        self.in_flight[name] -= 1

    async def rewrite_story(self, text, child_age, learning_prompt=None):
        self.calls["rewrite"].append((text, child_age, learning_prompt))
        if self.rewrite_error:
            raise self.rewrite_error
        return self.story

    async def generate_image(self, prompt):
        self.calls["image"].append(prompt)
        await self._enter("image")
        if prompt.page in self.image_errors:
            raise self.image_errors[prompt.page]
        if prompt.page in self.image_outputs:
            return self.image_outputs[prompt.page]
        return ImageGeneration(image_data_uri=image_uri(prompt.page))

    async def verify_image_fit(self, page_text, child_age, style_hint=None):
        self.calls["verify"].append((page_text, child_age, style_hint))
        if self.verify_error:
            raise self.verify_error
        return True

    async def transform_dialogue(self, page_text, child_age):
        self.calls["dialogue"].append(page_text)
        await self._enter("dialogue")
        if page_text in self.dialogue_errors:
            raise self.dialogue_errors[page_text]
        return DialogueDraft(dialogue_text=f"Narrator: {page_text}\nMila: Hello!")

    async def synthesize_speech(self, script, voice_profile, child_age):
        self.calls["speech"].append((script, voice_profile, child_age))
        await self._enter("speech")
        if script in self.speech_errors:
            raise self.speech_errors[script]
        return SpeechResult(audio_data_uri=audio_uri(script))

    async def synthesize_animation(self, image, page_text, child_age):
        self.calls["animation"].append((image, page_text, child_age))
        if self.animation_note:
            return AnimationResult(note=self.animation_note)
        return AnimationResult(animation_data_uri=GIF_URI)

    def capabilities(self) -> Capabilities:
        return Capabilities(
            rewrite_story=self.rewrite_story,
            generate_image=self.generate_image,
            verify_image_fit=self.verify_image_fit,
            transform_dialogue=self.transform_dialogue,
            synthesize_speech=self.synthesize_speech,
            synthesize_animation=self.synthesize_animation,
        )


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    return TestSessionLocal


@pytest.fixture
def fakes() -> FakeProviders:
    return FakeProviders()


@pytest.fixture
def fast_settings() -> Settings:
    """No retries and short timeouts"""
    return Settings(
        story_rewrite_retries=0,
        image_max_retries=0,
        llm_timeout=5,
        image_timeout=5,
        image_verify_timeout=5,
        tts_timeout=5,
        animation_timeout=5,
        page_max_concurrent=4,
    )


@pytest.fixture
def sample_request() -> GenerationRequest:
    return GenerationRequest(
        original_prompt="A little fox who learns to share her apples with a friend.",
        child_age=5,
        voice_profile="female",
        style_hint="soft pastel colors",
    )
