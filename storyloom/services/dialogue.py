"""
Dialogue transformation: page text -> "Speaker: line" script for narration.
"""

import asyncio
import re
from typing import Awaitable, Callable, List, Optional

import structlog

from storyloom.core.config import settings
from storyloom.models.dto import DialogueDraft, DialogueLine

logger = structlog.get_logger()

NARRATOR = "Narrator"

SPEAKER_MAX_LENGTH = 40

# Up to four capitalised words, e.g. "Narrator", "Mr. Fox", "Little Red Hen"
SPEAKER_LINE_RE = re.compile(
    r"^(?P<speaker>[^\W\d_][\w'.-]*(?: [^\W\d_][\w'.-]*){0,3})\s*:\s*(?P<line>\S.*)$"
)


def is_speaker_label(label: str) -> bool:
    """Names only: prose such as "Mila said" is not a speaker"""
    if len(label) > SPEAKER_MAX_LENGTH:
        return False
    return all(word[0].isupper() for word in label.split())


def parse_dialogue(script: Optional[str]) -> List[DialogueLine]:
    """
    Parse a script into lines.

    Returns an empty list unless every non-blank line has the
    "Speaker: text" form.
    """
    if not script:
        return []

    lines = []
    for raw in script.splitlines():
        raw = raw.strip()
        if not raw:
            continue
        match = SPEAKER_LINE_RE.match(raw)
        if not match or not is_speaker_label(match.group("speaker")):
            return []
        lines.append(
            DialogueLine(
                speaker=match.group("speaker"),
                line=match.group("line").strip(),
            )
        )
    return lines


def normalize_script(script: Optional[str]) -> Optional[str]:
    """One trimmed record per line, or None when the script is unusable"""
    lines = parse_dialogue(script)
    if not lines:
        return None
    return "\n".join(line.render() for line in lines)


def fallback_script(page_text: str) -> str:
    return f"{NARRATOR}: {page_text}"


class DialogueTransformer:
    def __init__(
        self,
        transform: Callable[[str, int], Awaitable[DialogueDraft]],
        timeout: Optional[float] = None,
    ):
        self.transform = transform
        self.timeout = timeout if timeout is not None else settings.llm_timeout

    async def to_dialogue(self, page_text: str, child_age: int) -> str:
        """Script for one page; falls back to plain narration, never raises"""
        try:
            draft = await asyncio.wait_for(
                self.transform(page_text, child_age), timeout=self.timeout
            )
            script = normalize_script(draft.dialogue_text if draft else None)
        except asyncio.TimeoutError:
            logger.warning("Dialogue transformation timed out", timeout=self.timeout)
            return fallback_script(page_text)
        except Exception as e:
            logger.warning("Dialogue transformation failed", error=str(e))
            return fallback_script(page_text)

        if script is None:
            logger.warning("Dialogue script malformed, narrating plain text")
            return fallback_script(page_text)
        return script
