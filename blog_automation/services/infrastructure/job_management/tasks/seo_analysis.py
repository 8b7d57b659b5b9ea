"""On-page SEO analysis of blog posts."""

import re
from typing import Dict, List

from blog_automation.lib.logger import configure_logger

from ..base import BaseTask, JobContext
from ..decorators import job
from ..models import JobPriority, JobRecord, SEOAnalysisPayload, SEOAnalysisResult

logger = configure_logger(__name__)

TITLE_LENGTH = (30, 60)
DESCRIPTION_LENGTH = (120, 160)
MIN_WORDS = 300
DENSITY_RANGE = (0.5, 2.5)


def keyword_density(text: str, keywords: List[str]) -> Dict[str, float]:
    """Occurrences per hundred words for each keyword, one decimal."""
    words = re.findall(r"\b\w+\b", text.lower())
    total = max(1, len(words))
    body = " ".join(words)
    density = {}
    for keyword in keywords:
        phrase = " ".join(re.findall(r"\b\w+\b", keyword.lower()))
        if not phrase:
            continue
        count = len(re.findall(rf"\b{re.escape(phrase)}\b", body))
        density[keyword] = round(count / total * 100, 1)
    return density


@job(
    "seo-analysis",
    name="SEO Analysis",
    description="Scores a post's title, description, length and keyword usage",
    payload_model=SEOAnalysisPayload,
    priority=JobPriority.HIGH,
    max_retries=3,
    timeout_ms=60000,
    tags=["seo"],
)
class SEOAnalysisTask(BaseTask[SEOAnalysisPayload, SEOAnalysisResult]):
    payload_model = SEOAnalysisPayload

    async def process(
        self, payload: SEOAnalysisPayload, context: JobContext
    ) -> SEOAnalysisResult:
        suggestions: List[str] = []
        score = 100
        context.report_progress(10)

        if not TITLE_LENGTH[0] <= len(payload.title) <= TITLE_LENGTH[1]:
            score -= 15
            suggestions.append(
                f"Keep the title between {TITLE_LENGTH[0]} and {TITLE_LENGTH[1]} characters"
            )

        description = payload.description or ""
        if not description:
            score -= 15
            suggestions.append("Add a meta description")
        elif not DESCRIPTION_LENGTH[0] <= len(description) <= DESCRIPTION_LENGTH[1]:
            score -= 5
            suggestions.append(
                f"Keep the meta description between {DESCRIPTION_LENGTH[0]} and "
                f"{DESCRIPTION_LENGTH[1]} characters"
            )
        context.report_progress(40)

        word_count = len(re.findall(r"\b\w+\b", payload.content))
        if word_count < MIN_WORDS:
            score -= 20
            suggestions.append(f"Expand the content to at least {MIN_WORDS} words")

        context.raise_if_cancelled()
        density = keyword_density(payload.content, payload.target_keywords)
        for keyword, value in density.items():
            if value < DENSITY_RANGE[0]:
                score -= 5
                suggestions.append(f"Use '{keyword}' more often")
            elif value > DENSITY_RANGE[1]:
                score -= 5
                suggestions.append(f"Reduce repetition of '{keyword}'")
            if keyword.lower() not in payload.title.lower():
                suggestions.append(f"Consider adding '{keyword}' to the title")
        context.report_progress(90)

        return SEOAnalysisResult(
            score=max(0, score), keyword_density=density, suggestions=suggestions
        )

    async def on_failed(self, job: JobRecord, error: Exception) -> None:
        logger.error(
            "SEO analysis failed for post",
            extra={"job_id": job.id, "error": str(error), "event_type": "seo_failed"},
        )
