"""
Page segmentation: rewritten story text -> ordered page texts.

Pure and deterministic; no external calls.
"""

from typing import List

from storyloom.models.dto import PageDraft

SENTENCE_BREAKS = (". ", "! ", "? ")


def char_limit(child_age: int) -> int:
    """Maximum characters per page for a reader of this age"""
    if child_age <= 3:
        return 100
    if child_age <= 6:
        return 200
    if child_age <= 9:
        return 300
    return 400


def _split_point(window: str, limit: int) -> int:
    """Offset just after the best break inside the window (always > 0)"""
    paragraph = window.rfind("\n\n")
    if paragraph != -1:
        return paragraph + 2

    sentence = max(window.rfind(mark) for mark in SENTENCE_BREAKS)
    if sentence != -1:
        return sentence + 2

    space = window.rfind(" ")
    if space != -1:
        return space + 1

    return limit


def segment(rewritten_text: str, child_age: int) -> List[PageDraft]:
    """
    Split the story into pages no longer than char_limit(child_age).

    Greedy, left to right. Paragraph breaks win over sentence ends, which win
    over plain spaces; a window without any of them is cut at the limit.
    Page texts are trimmed and empty pages dropped.
    """
    limit = char_limit(child_age)
    remaining = rewritten_text or ""
    texts: List[str] = []

    while remaining:
        if len(remaining) <= limit:
            texts.append(remaining.strip())
            break

        cut = _split_point(remaining[:limit], limit)
        texts.append(remaining[:cut].strip())
        remaining = remaining[cut:]

    return [
        PageDraft(index=number, text=text)
        for number, text in enumerate((t for t in texts if t), start=1)
    ]
