"""
Render a saved DreamWeaver social story into a printable PDF.

Usage:
    python scripts/render_story_pdf.py --list
    python scripts/render_story_pdf.py \
        --story-id 3f2a... \
        --output maya_dentist.pdf
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from tqdm.auto import tqdm

# Ensure project root is on the Python path.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dreamweaver import SocialStoryPDFBuilder, StoryLibrary, load_settings  # noqa: E402
from dreamweaver.pdf_generation import PAGE_SIZES  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Convert a saved DreamWeaver social story into a PDF."
    )
    parser.add_argument(
        "--library",
        default=None,
        help="Story library YAML path (default: from settings).",
    )
    parser.add_argument(
        "--settings",
        default="local.settings.json",
        help="Optional local settings JSON overlay (default: local.settings.json).",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List saved stories, most recently viewed first, and exit.",
    )
    parser.add_argument("--story-id", help="Id of the saved story to render.")
    parser.add_argument("--output", help="Destination PDF file path.")
    parser.add_argument(
        "--page-size",
        choices=sorted(PAGE_SIZES.keys()),
        default="square",
        help="Page size to render (default: square).",
    )
    parser.add_argument(
        "--margin-mm",
        type=float,
        default=18.0,
        help="Page margin in millimetres (default: 18).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Timeout in seconds for downloading illustration assets (default: 30).",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = load_settings(Path(args.settings))
    library = StoryLibrary(args.library or settings.library_file)

    if args.list:
        stories = library.list()
        if not stories:
            tqdm.write(f"No saved stories in {library.path}")
        for story in stories:
            tqdm.write(f"{story.id}  {story.title}  ({len(story.scenes)} scenes, {story.child_name})")
        return 0

    if not args.story_id or not args.output:
        tqdm.write("--story-id and --output are required unless --list is given.")
        return 2

    story = library.get(args.story_id)
    if story is None:
        tqdm.write(f"No saved story with id {args.story_id} in {library.path}")
        return 1
    library.touch(story.id)

    builder = SocialStoryPDFBuilder(
        page_size=PAGE_SIZES[args.page_size],
        margin_mm=args.margin_mm,
        request_timeout=args.timeout,
    )
    output = builder.build(story, args.output)

    print(f"Rendered social story PDF to {output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
