"""Draft generation for new blog posts."""

import re
from typing import List

from blog_automation.lib.logger import configure_logger

from ..base import BaseTask, JobContext
from ..decorators import job
from ..models import GeneratePostPayload, GeneratePostResult, JobPriority

logger = configure_logger(__name__)

SECTION_HEADINGS = ("Introduction", "Background", "Key Points", "Conclusion")


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or "post"


@job(
    "generate-post",
    name="Generate Post",
    description="Builds a structured draft for a topic and keyword set",
    payload_model=GeneratePostPayload,
    priority=JobPriority.NORMAL,
    max_retries=2,
    timeout_ms=120000,
    tags=["content"],
)
class GeneratePostTask(BaseTask[GeneratePostPayload, GeneratePostResult]):
    payload_model = GeneratePostPayload

    async def process(
        self, payload: GeneratePostPayload, context: JobContext
    ) -> GeneratePostResult:
        title = payload.topic.strip().rstrip(".").title()
        words_per_section = max(1, payload.target_word_count // len(SECTION_HEADINGS))

        sections: List[str] = [f"# {title}"]
        for index, heading in enumerate(SECTION_HEADINGS, start=1):
            context.raise_if_cancelled()
            sections.append(f"## {heading}")
            sections.append(self._section_body(payload, heading, words_per_section))
            context.report_progress(index * 100 // len(SECTION_HEADINGS))

        content = "\n\n".join(sections)
        word_count = len(re.findall(r"\b\w+\b", content))

        logger.debug(
            f"Draft generated: {title}",
            extra={"job_id": context.job_id, "word_count": word_count},
        )
        return GeneratePostResult(
            title=title,
            slug=slugify(title),
            content=content,
            word_count=word_count,
        )

    @staticmethod
    def _section_body(payload: GeneratePostPayload, heading: str, words: int) -> str:
        vocabulary = [payload.topic.lower()] + [k.lower() for k in payload.keywords]
        sentence = f"{heading} on {', '.join(vocabulary)}."
        repeats = max(1, words // max(1, len(sentence.split())))
        return " ".join([sentence] * repeats)
