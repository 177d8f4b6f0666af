from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

from storyloom.core.errors import InvalidStageTransition, RunSealedError
from storyloom.models.catalog import LEARNING_TAGS, VISUAL_STYLES, get_visual_style


def utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class VoiceProfile(str, Enum):
    male = "male"
    female = "female"


class PipelineStage(IntEnum):
    """Run stages in their only permitted order. FAILED is terminal."""

    INITIAL = 0
    STORY_REWRITTEN = 1
    PAGES_IMAGED = 2
    PAGES_VOICED = 3
    PAGES_ANIMATED = 4
    COMPLETE = 5
    FAILED = 9

    @property
    def label(self) -> str:
        return self.name.lower()


class OutcomeKind(str, Enum):
    ok = "ok"
    unavailable = "unavailable"  # capability answered without usable media
    failed = "failed"  # the call itself raised


class Outcome(BaseModel):
    """Tagged result of one per-page capability call"""

    model_config = ConfigDict(frozen=True)

    kind: OutcomeKind
    value: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: str) -> "Outcome":
        return cls(kind=OutcomeKind.ok, value=value)

    @classmethod
    def unavailable(cls, reason: str) -> "Outcome":
        return cls(kind=OutcomeKind.unavailable, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "Outcome":
        return cls(kind=OutcomeKind.failed, reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.kind == OutcomeKind.ok


# ==================== Input Models ====================


class GenerationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    original_prompt: str = Field(min_length=10, max_length=2000)
    child_age: int = Field(ge=1, le=12)
    voice_profile: VoiceProfile = VoiceProfile.female
    style_hint: Optional[str] = Field(default=None, max_length=1200)
    visual_style: Optional[str] = Field(default=None, max_length=40)
    learning_tag_ids: List[str] = Field(default_factory=list, max_length=7)
    title: Optional[str] = Field(default=None, max_length=80)

    @field_validator("visual_style")
    @classmethod
    def _known_style(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in VISUAL_STYLES:
            raise ValueError(f"Unknown visual style: {v}")
        return v

    @field_validator("learning_tag_ids")
    @classmethod
    def _known_tags(cls, v: List[str]) -> List[str]:
        unknown = [t for t in v if t not in LEARNING_TAGS]
        if unknown:
            raise ValueError(f"Unknown learning tags: {', '.join(unknown)}")
        return list(dict.fromkeys(v))

    @property
    def effective_style_hint(self) -> Optional[str]:
        """Free-form hint and preset description, joined"""
        parts = []
        preset = get_visual_style(self.visual_style)
        if preset and preset.description:
            parts.append(preset.description)
        if self.style_hint and self.style_hint.strip():
            parts.append(self.style_hint.strip())
        return ". ".join(parts) if parts else None


# ==================== Capability Models ====================


class RewrittenStory(BaseModel):
    rewritten_story: str


class ImageFitVerdict(BaseModel):
    image_matches_text: bool


class DialogueDraft(BaseModel):
    dialogue_text: str = ""


class DialogueLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    speaker: str
    line: str

    def render(self) -> str:
        return f"{self.speaker}: {self.line}"


class ImagePrompt(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page: int = Field(ge=1)
    text: str = Field(min_length=1)
    reference_image: Optional[str] = None
    constraints: List[str] = Field(default_factory=list)

    @property
    def chained(self) -> bool:
        return self.reference_image is not None


class ImageGeneration(BaseModel):
    image_data_uri: Optional[str] = None
    note: Optional[str] = None


class SpeechResult(BaseModel):
    audio_data_uri: Optional[str] = None
    note: Optional[str] = None


class AnimationResult(BaseModel):
    animation_data_uri: Optional[str] = None
    note: Optional[str] = None


class ImageResult(BaseModel):
    """Outcome of one page of image synthesis"""

    page: int
    outcome: Outcome
    approved: bool = False
    chained: bool = False

    @property
    def image_uri(self) -> Optional[str]:
        return self.outcome.value if self.outcome.is_ok else None


# ==================== Pipeline Models ====================


class PageDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1)
    text: str = Field(min_length=1)


class StageFlags(BaseModel):
    image_pending: bool = False
    voice_pending: bool = False
    animation_pending: bool = False


class PageArtifact(BaseModel):
    index: int = Field(ge=1)
    text: str
    image_uri: Optional[str] = None
    image_approved: bool = False
    image_chained: bool = False
    image_outcome: Optional[Outcome] = None
    dialogue_script: Optional[str] = None
    voice_uri: Optional[str] = None
    voice_outcome: Optional[Outcome] = None
    animation_uri: Optional[str] = None
    animation_outcome: Optional[Outcome] = None
    stage_flags: StageFlags = Field(default_factory=StageFlags)

    @classmethod
    def from_draft(cls, draft: PageDraft) -> "PageArtifact":
        return cls(index=draft.index, text=draft.text)


class ErrorInfo(BaseModel):
    code: str
    message: str = Field(max_length=300)


class PipelineRun(BaseModel):
    """Aggregate owned by exactly one orchestrator for the run's lifetime"""

    run_id: str = Field(default_factory=lambda: f"run_{uuid.uuid4().hex[:12]}")
    request: GenerationRequest
    rewritten_text: Optional[str] = None
    title: Optional[str] = None
    pages: List[PageArtifact] = Field(default_factory=list)
    stage: PipelineStage = PipelineStage.INITIAL
    progress: int = Field(default=0, ge=0, le=100)
    error: Optional[ErrorInfo] = None
    sealed: bool = False
    abandoned: bool = False
    storybook_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def _ensure_mutable(self):
        if self.sealed:
            raise RunSealedError(self.run_id)

    def advance(self, stage: PipelineStage):
        """Move forward by exactly one stage, or to FAILED"""
        self._ensure_mutable()
        if stage == PipelineStage.FAILED:
            if self.stage in (PipelineStage.COMPLETE, PipelineStage.FAILED):
                raise InvalidStageTransition(self.stage.label, stage.label)
        elif self.stage == PipelineStage.FAILED or stage != self.stage + 1:
            raise InvalidStageTransition(self.stage.label, stage.label)
        self.stage = stage

    def fail(self, code: str, message: str):
        self.advance(PipelineStage.FAILED)
        self.error = ErrorInfo(code=code, message=message[:300])

    def set_progress(self, value: float):
        """Progress never goes backwards"""
        self._ensure_mutable()
        self.progress = max(self.progress, min(100, int(value)))

    def set_pages(self, drafts: List[PageDraft]):
        self._ensure_mutable()
        if self.pages:
            raise ValueError("Pages are fixed once segmentation has run")
        self.pages = [PageArtifact.from_draft(d) for d in drafts]

    def page(self, index: int) -> PageArtifact:
        page = self.pages[index - 1]
        if page.index != index:
            raise LookupError(f"Page {index} is out of order")
        return page

    def update_page(self, index: int, **changes) -> PageArtifact:
        self._ensure_mutable()
        page = self.page(index)
        for name, value in changes.items():
            if not hasattr(page, name) or name == "index":
                raise AttributeError(f"PageArtifact has no writable field {name}")
            setattr(page, name, value)
        return page

    def set_pending(self, flag: str, pending: bool, index: Optional[int] = None):
        self._ensure_mutable()
        targets = [self.page(index)] if index is not None else self.pages
        for page in targets:
            setattr(page.stage_flags, flag, pending)

    def abandon(self):
        self._ensure_mutable()
        self.abandoned = True

    def seal(self, storybook_id: str):
        self._ensure_mutable()
        if self.stage != PipelineStage.COMPLETE:
            raise InvalidStageTransition(self.stage.label, "sealed")
        self.storybook_id = storybook_id
        self.sealed = True

    @property
    def terminal(self) -> bool:
        return self.stage in (PipelineStage.COMPLETE, PipelineStage.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.stage == PipelineStage.COMPLETE and self.sealed

    def to_storybook(self) -> "Storybook":
        return Storybook(
            run_id=self.run_id,
            title=self.title or "Untitled Story",
            original_prompt=self.request.original_prompt,
            child_age=self.request.child_age,
            voice_profile=self.request.voice_profile,
            style_hint=self.request.effective_style_hint,
            learning_tag_ids=list(self.request.learning_tag_ids),
            rewritten_text=self.rewritten_text or "",
            pages=[
                StorybookPage(
                    page_number=p.index,
                    text=p.text,
                    dialogue_script=p.dialogue_script,
                    image_url=p.image_uri,
                    image_matches_text=p.image_approved,
                    voiceover_url=p.voice_uri,
                    animation_url=p.animation_uri,
                )
                for p in self.pages
            ],
            created_at=self.created_at,
        )


# ==================== Result Models ====================


class StorybookPage(BaseModel):
    page_number: int = Field(ge=1)
    text: str
    dialogue_script: Optional[str] = None
    image_url: Optional[str] = None
    image_matches_text: bool = False
    voiceover_url: Optional[str] = None
    animation_url: Optional[str] = None


class Storybook(BaseModel):
    run_id: str
    title: str = Field(min_length=1, max_length=80)
    original_prompt: str
    child_age: int
    voice_profile: VoiceProfile
    style_hint: Optional[str] = None
    learning_tag_ids: List[str] = Field(default_factory=list)
    rewritten_text: str
    pages: List[StorybookPage]
    created_at: datetime
