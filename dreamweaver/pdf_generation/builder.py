"""
Render saved social stories into printable PDFs.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from io import BytesIO
from pathlib import Path
from typing import Iterable

import requests
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.lib.pagesizes import A4, LETTER
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.units import inch, mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas
from reportlab.platypus import Flowable, Frame, Paragraph

from dreamweaver.persistence import SavedSocialStory
from dreamweaver.pipeline import SocialSceneStep

logger = logging.getLogger(__name__)

PAGE_SIZES = {
    "a4": A4,
    "letter": LETTER,
    "square": (8 * inch, 8 * inch),
}

FONT_DIRECTORIES = (
    Path("/usr/share/fonts"),
    Path("/usr/local/share/fonts"),
    Path.home() / ".fonts",
    Path("/Library/Fonts"),
    Path("/System/Library/Fonts"),
    Path("C:/Windows/Fonts"),
)


@dataclass(frozen=True)
class Palette:
    cover: colors.Color = field(default_factory=lambda: colors.HexColor("#3A7CA5"))
    text_page: colors.Color = field(default_factory=lambda: colors.HexColor("#FFFDF7"))
    image_page: colors.Color = field(default_factory=lambda: colors.HexColor("#EEF6FF"))
    tip: colors.Color = field(default_factory=lambda: colors.HexColor("#FFF1C9"))
    ink: colors.Color = field(default_factory=lambda: colors.HexColor("#24323F"))
    muted: colors.Color = field(default_factory=lambda: colors.HexColor("#4B5A6D"))


@dataclass(frozen=True)
class FontFamily:
    regular: str
    bold: str
    regular_files: tuple[str, ...] = ()
    bold_files: tuple[str, ...] = ()


# Tried in order; Helvetica when none is installed.
ROUNDED_FAMILIES = (
    FontFamily(
        "ComicSansMS",
        "ComicSansMS-Bold",
        ("Comic Sans MS.ttf", "ComicSansMS.ttf", "truetype/msttcorefonts/Comic_Sans_MS.ttf"),
        ("Comic Sans MS Bold.ttf", "ComicSansMS-Bold.ttf", "truetype/msttcorefonts/Comic_Sans_MS_Bold.ttf"),
    ),
    FontFamily(
        "Nunito",
        "Nunito-Bold",
        ("Nunito-Regular.ttf", "truetype/nunito/Nunito-Regular.ttf"),
        ("Nunito-Bold.ttf", "truetype/nunito/Nunito-Bold.ttf"),
    ),
)
FALLBACK_FAMILY = FontFamily("Helvetica", "Helvetica-Bold")


def _register(name: str, filenames: Iterable[str]) -> bool:
    if name in pdfmetrics.getRegisteredFontNames():
        return True
    for directory in FONT_DIRECTORIES:
        for filename in filenames:
            font_path = directory / filename
            if not font_path.is_file():
                continue
            try:
                pdfmetrics.registerFont(TTFont(name, str(font_path)))
            except Exception as exc:
                logger.debug("Skipping font %s at %s: %s", name, font_path, exc)
                continue
            return True
    return False


@lru_cache(maxsize=None)
def story_font_family() -> FontFamily:
    """The first rounded family installed on this machine."""
    for family in ROUNDED_FAMILIES:
        if _register(family.regular, family.regular_files) and _register(family.bold, family.bold_files):
            return family
    return FALLBACK_FAMILY


def _story_styles(fonts: FontFamily, palette: Palette) -> dict[str, ParagraphStyle]:
    return {
        "cover_title": ParagraphStyle(
            "CoverTitle", fontName="Helvetica-Bold", fontSize=30, leading=34,
            alignment=TA_CENTER, textColor=colors.white, spaceAfter=14,
        ),
        "cover_subtitle": ParagraphStyle(
            "CoverSubtitle", fontName="Helvetica", fontSize=16, leading=20,
            alignment=TA_CENTER, textColor=colors.white,
        ),
        "scene_title": ParagraphStyle(
            "SceneTitle", fontName=fonts.bold, fontSize=26, leading=30,
            alignment=TA_CENTER, textColor=palette.ink, spaceAfter=16,
        ),
        "scene_body": ParagraphStyle(
            "SceneBody", fontName=fonts.regular, fontSize=20, leading=30,
            alignment=TA_LEFT, textColor=palette.ink, spaceAfter=18,
        ),
        "tip": ParagraphStyle(
            "ParentTip", fontName="Helvetica-Oblique", fontSize=12, leading=15,
            alignment=TA_LEFT, textColor=palette.muted, backColor=palette.tip, borderPadding=8,
        ),
        "caption": ParagraphStyle(
            "Caption", fontName="Helvetica-Oblique", fontSize=10, leading=12,
            alignment=TA_CENTER, textColor=palette.muted,
        ),
    }


def escape_markup(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


class SocialStoryPDFBuilder:
    """
    Lay a social story out for printing.

    The document opens with a cover, then gives every scene two pages: the text
    (with the parent tip, when there is one) followed by the illustration. Scenes
    whose image failed get a plain placeholder page instead.
    """

    def __init__(
        self,
        *,
        page_size: tuple[float, float] = PAGE_SIZES["square"],
        margin_mm: float = 18.0,
        palette: Palette | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        self.page_size = page_size
        self.margin = margin_mm * mm
        self.palette = palette or Palette()
        self.request_timeout = request_timeout
        self.styles = _story_styles(story_font_family(), self.palette)

    def build(
        self,
        story: SavedSocialStory,
        output_path: Path | str,
        *,
        title: str | None = None,
    ) -> Path:
        destination = Path(output_path)
        destination.parent.mkdir(parents=True, exist_ok=True)

        pdf = canvas.Canvas(str(destination), pagesize=self.page_size)
        pdf.setTitle(title or story.title)
        self._cover(pdf, title or story.title, story.child_name)
        for step in story.scenes:
            self._text_page(pdf, step, story.child_name)
            self._illustration_page(pdf, step)
        pdf.save()

        logger.info("Rendered %d scenes to %s.", len(story.scenes), destination)
        return destination

    def _cover(self, pdf: canvas.Canvas, title: str, child_name: str) -> None:
        _, height = self.page_size
        self._paint(pdf, self.palette.cover)
        self._place(
            pdf,
            [
                Paragraph(escape_markup(title), self.styles["cover_title"]),
                Paragraph(f"A social story for {escape_markup(child_name)}", self.styles["cover_subtitle"]),
            ],
            y=self.margin,
            height=height * 0.6,
        )
        pdf.showPage()

    def _text_page(self, pdf: canvas.Canvas, step: SocialSceneStep, child_name: str) -> None:
        _, height = self.page_size
        scene = step.scene
        self._paint(pdf, self.palette.text_page)

        content: list[Flowable] = [
            Paragraph(escape_markup(scene.scene_title), self.styles["scene_title"]),
            Paragraph(escape_markup(scene.scene_text), self.styles["scene_body"]),
        ]
        if scene.educational_note:
            content.append(
                Paragraph(f"<b>Parent tip:</b> {escape_markup(scene.educational_note)}", self.styles["tip"])
            )
        self._place(pdf, content, y=self.margin + 30, height=height - 2 * self.margin - 30)
        self._caption(pdf, f"Scene {scene.scene_number} \u2022 {escape_markup(child_name)}'s story")
        pdf.showPage()

    def _illustration_page(self, pdf: canvas.Canvas, step: SocialSceneStep) -> None:
        width, height = self.page_size
        self._paint(pdf, self.palette.image_page)

        reader = self._load_image(step.image_url) if step.image_url else None
        if reader is None:
            self._place(
                pdf,
                [Paragraph("Illustration unavailable", self.styles["caption"])],
                y=height / 2 - 20,
                height=40,
            )
        else:
            image_width, image_height = reader.getSize()
            box = min(width, height) - 2 * self.margin
            scale = min(box / image_width, box / image_height)
            drawn_width, drawn_height = image_width * scale, image_height * scale
            pdf.drawImage(
                reader,
                (width - drawn_width) / 2,
                (height - drawn_height) / 2,
                drawn_width,
                drawn_height,
                preserveAspectRatio=True,
                mask="auto",
            )

        self._caption(pdf, f"Illustration for scene {step.scene.scene_number}")
        pdf.showPage()

    def _paint(self, pdf: canvas.Canvas, background: colors.Color) -> None:
        width, height = self.page_size
        pdf.setFillColor(background)
        pdf.rect(0, 0, width, height, stroke=0, fill=1)

    def _place(self, pdf: canvas.Canvas, content: list[Flowable], *, y: float, height: float) -> None:
        width, _ = self.page_size
        Frame(self.margin, y, width - 2 * self.margin, height, showBoundary=0).addFromList(content, pdf)

    def _caption(self, pdf: canvas.Canvas, text: str) -> None:
        self._place(pdf, [Paragraph(text, self.styles["caption"])], y=10, height=20)

    def _load_image(self, source: str) -> ImageReader | None:
        """Decode an inline data URI or download a remote illustration."""
        if source.startswith("data:"):
            try:
                return ImageReader(BytesIO(base64.b64decode(source.partition(",")[2])))
            except (ValueError, OSError):
                logger.warning("Skipping undecodable inline illustration.")
                return None

        try:
            response = requests.get(source, timeout=self.request_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Could not download illustration %s: %s", source, exc)
            return None
        return ImageReader(BytesIO(response.content))
