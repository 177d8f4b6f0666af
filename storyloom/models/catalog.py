"""
Visual style presets and learning tags offered to parents.

A preset's description becomes (part of) the style hint passed to image
synthesis; a learning tag's prompt text is woven into the story rewrite.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class VisualStyle(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str


class LearningTag(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    learning_focus: str
    prompt_text: str
    activity: str


VISUAL_STYLES: dict[str, VisualStyle] = {
    s.id: s
    for s in [
        VisualStyle(id="ai_default", name="AI Default (No Specific Style)", description=""),
        VisualStyle(
            id="watercolor",
            name="Classic Watercolor Storybook",
            description=(
                "Soft hand-painted watercolor with gentle gradients and delicate textures, "
                "pastel palette with warm accents, light translucent brushstrokes, "
                "warm and nostalgic bedtime-story mood"
            ),
        ),
        VisualStyle(
            id="cartoon",
            name="Whimsical Cartoon",
            description=(
                "Bold clean lines in a modern cartoon look with playful exaggerated proportions, "
                "bright saturated high-contrast colors, fun and energetic mood"
            ),
        ),
        VisualStyle(
            id="sketchbook",
            name="Hand-Drawn Sketchbook",
            description=(
                "Loose pencil sketch with cross-hatching and minimal coloring, mostly grayscale "
                "with small pops of color, imaginative hand-drawn feel"
            ),
        ),
        VisualStyle(
            id="digital_pop",
            name="Vibrant Digital Pop",
            description=(
                "Sleek digital art with bold outlines and smooth gradients, neon-bright "
                "saturated colors, modern and lively mood"
            ),
        ),
        VisualStyle(
            id="claymation",
            name="Soft Claymation Aesthetic",
            description=(
                "Textured stop-motion clay look with a tactile handmade feel, warm earthy "
                "tones, cozy and quirky mood"
            ),
        ),
        VisualStyle(
            id="retro_book",
            name="Retro Picture Book",
            description=(
                "Flat mid-century picture-book illustration with bold shapes, a limited palette "
                "of mustard, forest green, teal and coral, black outlines, timeless charm"
            ),
        ),
        VisualStyle(
            id="fantasy_glow",
            name="Fantasy Glow",
            description=(
                "Luminous ethereal digital painting with deep jewel tones and glowing gold and "
                "turquoise accents, misty enchanting atmosphere"
            ),
        ),
    ]
}


LEARNING_TAGS: dict[str, LearningTag] = {
    t.id: t
    for t in [
        LearningTag(
            id="counting_math",
            name="Counting (Math)",
            learning_focus="Basic counting and number recognition.",
            prompt_text=(
                "Include scenes where characters share items so the child can count the "
                "items or the friends receiving them."
            ),
            activity="Pause on a sharing scene and count the shared items out loud together.",
        ),
        LearningTag(
            id="addition_subtraction_math",
            name="Addition and Subtraction (Math)",
            learning_focus="Simple addition and subtraction concepts.",
            prompt_text=(
                "Show quantities changing when characters give items away or collect more, "
                "so simple adding and taking away can be followed."
            ),
            activity="Ask how many items are left after some are given away, using fingers or blocks.",
        ),
        LearningTag(
            id="gardening_plant_life_cycle",
            name="Gardening (Plant Life Cycle)",
            learning_focus="Understanding plant needs and growth.",
            prompt_text=(
                "If plants appear, show that they need care such as water and sunlight to grow, "
                "and how they struggle or thrive."
            ),
            activity="Plant a seed in a cup, water it and track its growth over a few days.",
        ),
        LearningTag(
            id="sharing_fairness_social_math",
            name="Sharing and Fairness (Social-Emotional Math)",
            learning_focus="Dividing resources equally to practice fairness.",
            prompt_text=(
                "When characters share, explore splitting things equally and why fairness "
                "makes everyone happy."
            ),
            activity="Share a handful of blocks equally between toy friends and count each share.",
        ),
        LearningTag(
            id="patterns_math",
            name="Patterns (Math)",
            learning_focus="Recognizing and creating patterns.",
            prompt_text=(
                "Describe repeating elements such as alternating colors or a repeated sequence "
                "of actions so patterns can be spotted."
            ),
            activity="Build a color pattern with beads and ask the child to continue it.",
        ),
        LearningTag(
            id="environmental_awareness_ecology",
            name="Environmental Awareness (Gardening/Ecology)",
            learning_focus="Understanding ecosystems and caring for nature.",
            prompt_text=(
                "Highlight how animals and plants depend on each other and how the characters' "
                "actions help or harm living things."
            ),
            activity="Make a paper-plate pond and talk about what its plants and animals need.",
        ),
        LearningTag(
            id="measurement_math",
            name="Measurement (Math)",
            learning_focus="Exploring size and comparison.",
            prompt_text=(
                "Contrast characters or objects of different sizes so bigger, smaller, taller "
                "and shorter can be compared."
            ),
            activity="Measure toys with a string and compare which story object is bigger.",
        ),
    ]
}


def get_visual_style(style_id: Optional[str]) -> Optional[VisualStyle]:
    if not style_id:
        return None
    return VISUAL_STYLES.get(style_id)


def learning_prompt_text(tag_ids: list[str]) -> Optional[str]:
    """Bullet list of learning themes for the rewrite prompt, None when empty"""
    lines = [
        f"- {LEARNING_TAGS[tag_id].name}: {LEARNING_TAGS[tag_id].prompt_text}"
        for tag_id in tag_ids
        if tag_id in LEARNING_TAGS
    ]
    return "\n".join(lines) if lines else None
