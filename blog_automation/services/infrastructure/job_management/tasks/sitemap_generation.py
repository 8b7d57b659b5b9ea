"""sitemap.xml generation."""

from datetime import datetime
from typing import List
from xml.sax.saxutils import escape

from ..base import BaseTask, JobContext
from ..decorators import job
from ..models import (
    JobPriority,
    SitemapGenerationPayload,
    SitemapGenerationResult,
    utcnow,
)

STATIC_PATHS = ("/", "/blog", "/about", "/projects", "/contact")


def render_sitemap(base_url: str, paths: List[str], last_modified: datetime) -> str:
    lastmod = last_modified.date().isoformat()
    entries = [
        "  <url>\n"
        f"    <loc>{escape(base_url.rstrip('/') + path)}</loc>\n"
        f"    <lastmod>{lastmod}</lastmod>\n"
        "  </url>"
        for path in paths
    ]
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
        + "\n".join(entries)
        + "\n</urlset>\n"
    )


@job(
    "sitemap-generation",
    name="Sitemap Generation",
    payload_model=SitemapGenerationPayload,
    priority=JobPriority.LOW,
    max_retries=2,
    timeout_ms=60000,
    tags=["seo", "sitemap"],
)
class SitemapGenerationTask(BaseTask[SitemapGenerationPayload, SitemapGenerationResult]):
    payload_model = SitemapGenerationPayload

    async def process(
        self, payload: SitemapGenerationPayload, context: JobContext
    ) -> SitemapGenerationResult:
        paths: List[str] = []
        for path in list(STATIC_PATHS) + payload.paths:
            normalized = "/" + path.strip("/") if path.strip("/") else "/"
            if normalized not in paths:
                paths.append(normalized)
        if not payload.include_drafts:
            paths = [p for p in paths if not p.startswith("/drafts")]
        context.report_progress(50)

        sitemap = render_sitemap(
            str(payload.base_url), paths, payload.last_modified or utcnow()
        )
        return SitemapGenerationResult(url_count=len(paths), sitemap=sitemap)
