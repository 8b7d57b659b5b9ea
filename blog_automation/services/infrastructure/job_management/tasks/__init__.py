"""Blog automation job handlers.

Each module registers its task class with the default registry through the
@job decorator when imported. To add a job type:

1. Create a new .py file in this directory
2. Define the payload model in ..models
3. Decorate a BaseTask subclass with @job("your-job-type", payload_model=...)
4. Import the module below
"""

from . import (
    generate_post,
    publish_post,
    send_digest,
    seo_analysis,
    sitemap_generation,
    webhook_delivery,
)
from .generate_post import GeneratePostTask
from .publish_post import PublishPostTask
from .send_digest import SendDigestTask
from .seo_analysis import SEOAnalysisTask
from .sitemap_generation import SitemapGenerationTask
from .webhook_delivery import WebhookDeliveryTask

__all__ = [
    "GeneratePostTask",
    "PublishPostTask",
    "SendDigestTask",
    "SEOAnalysisTask",
    "SitemapGenerationTask",
    "WebhookDeliveryTask",
]
