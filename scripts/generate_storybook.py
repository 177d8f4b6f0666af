#!/usr/bin/env python3
"""
Generate one storybook from the command line.

Usage:
    python scripts/generate_storybook.py --prompt "A fox who learns to share" --age 5
    python scripts/generate_storybook.py --prompt-file story.txt --age 8 --voice male --style watercolor
    python scripts/generate_storybook.py --prompt "..." --age 4 --mock --output book.json
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

MOCK_ENV = {
    "LLM_PROVIDER": "mock",
    "IMAGE_PROVIDER": "mock",
    "TTS_PROVIDER": "mock",
    "ANIMATION_PROVIDER": "mock",
}


def parse_args():
    parser = argparse.ArgumentParser(description="Generate a children's storybook")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--prompt", type=str, help="Story prompt (10-2000 characters)")
    source.add_argument("--prompt-file", type=str, help="Read the story prompt from a file")
    parser.add_argument("--age", type=int, required=True, help="Child age (1-12)")
    parser.add_argument("--voice", choices=["female", "male"], default="female", help="Narrator voice")
    parser.add_argument("--style", type=str, help="Visual style preset id (e.g. watercolor)")
    parser.add_argument("--style-hint", type=str, help="Free-form illustration style hint")
    parser.add_argument("--learning-tag", action="append", default=[], help="Learning tag id (repeatable)")
    parser.add_argument("--title", type=str, help="Storybook title")
    parser.add_argument("--output", type=str, default="storybook.json", help="Output JSON path")
    parser.add_argument("--mock", action="store_true", help="Use mock providers (no real calls)")
    parser.add_argument("--console-logs", action="store_true", help="Human-readable logs instead of JSON")
    return parser.parse_args()


async def main():
    args = parse_args()

    # Settings are read when the package is first imported
    if args.mock:
        os.environ.update(MOCK_ENV)

    from pydantic import ValidationError

    from storyloom.core.logging import configure_logging
    from storyloom.models.dto import GenerationRequest
    from storyloom.services.orchestrator import generate_storybook
    from storyloom.services.progress import RecordingProgressReporter
    from storyloom.services.tasks import summarize_run

    configure_logging(json_logs=not args.console_logs)

    prompt = args.prompt
    if args.prompt_file:
        prompt = Path(args.prompt_file).read_text(encoding="utf-8").strip()

    try:
        request = GenerationRequest(
            original_prompt=prompt,
            child_age=args.age,
            voice_profile=args.voice,
            visual_style=args.style,
            style_hint=args.style_hint,
            learning_tag_ids=args.learning_tag,
            title=args.title,
        )
    except ValidationError as e:
        print(f"Invalid request:\n{e}", file=sys.stderr)
        sys.exit(2)

    reporter = RecordingProgressReporter()
    run = await generate_storybook(request, reporter=reporter)
    summary = summarize_run(run)

    output = Path(args.output)
    output.write_text(json.dumps(summary, indent=2, ensure_ascii=False), encoding="utf-8")

    print(f"\n{'=' * 60}")
    print("Storybook Summary")
    print(f"{'=' * 60}")
    print(f"Status:   {summary['status']}")
    print(f"Stage:    {summary['stage']} ({summary['progress']}%)")
    print(f"Title:    {summary['title']}")
    print(f"Pages:    {summary['page_count']}")
    if run.pages:
        print(f"Images:   {sum(1 for p in run.pages if p.image_uri)}/{len(run.pages)}")
        print(f"Voices:   {sum(1 for p in run.pages if p.voice_uri)}/{len(run.pages)}")
        print(f"Animated: {sum(1 for p in run.pages if p.animation_uri)}/{len(run.pages)}")
    if summary["error"]:
        print(f"Error:    [{summary['error']['code']}] {summary['error']['message']}")
    print(f"Updates:  {len(reporter.snapshots)} progress reports")
    print(f"Written:  {output}")

    if summary["status"] != "success":
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
