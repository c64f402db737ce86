"""Generation collaborators for sandbox sessions.

The real article pipeline lives outside this package; hosts plug it in by
subclassing SandboxGenerator. PlaceholderGenerator renders an HTML skeleton
so sessions are usable without it.
"""

from __future__ import annotations

import math
import random
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader

from sona.sandbox.session import SandboxContent, SandboxGenerationRequest, new_content_id

_TEMPLATE_DIR = Path(__file__).parent.parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    trim_blocks=True,
    lstrip_blocks=True,
)

WORDS_PER_PARAGRAPH = 100


class SandboxGenerator(ABC):
    """Produces one article for a sandbox session."""

    @abstractmethod
    def generate(
        self, request: SandboxGenerationRequest, settings: dict[str, Any]
    ) -> SandboxContent:
        """Generate content using the session's merged settings, never production's."""


class PlaceholderGenerator(SandboxGenerator):
    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def generate(
        self, request: SandboxGenerationRequest, settings: dict[str, Any]
    ) -> SandboxContent:
        length = request.length or "medium"
        word_count = int(settings["word_count_targets"][length])
        quality = 70 + self._rng.random() * 25

        template = _env.get_template("sandbox_article.html.j2")
        body = template.render(
            topic=request.topic,
            keywords=request.include_keywords,
            body_paragraphs=max(math.ceil(word_count / WORDS_PER_PARAGRAPH) - 2, 0),
        )
        return SandboxContent(
            id=new_content_id(),
            topic=request.topic,
            category=request.category,
            content=body,
            title=f"مقال عن {request.topic}",
            word_count=word_count,
            quality_score=round(quality, 2),
        )
