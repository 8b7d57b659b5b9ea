"""Tests for handler registration."""

from blog_automation.services.infrastructure.job_management.base import (
    BaseTask,
    JobContext,
)
from blog_automation.services.infrastructure.job_management.decorators import (
    JobMetadata,
    JobRegistry,
)
from blog_automation.services.infrastructure.job_management.models import (
    JobPriority,
    SendDigestPayload,
)


class TestJobRegistry:
    def test_register_class(self, registry):
        @registry.register("send-digest", priority=JobPriority.LOW, max_retries=5)
        class DigestTask(BaseTask):
            """Sends digests."""

            payload_model = SendDigestPayload

            async def process(self, payload, context: JobContext):
                return None

        metadata = registry.get_metadata("send-digest")
        assert "send-digest" in registry
        assert metadata.name == "DigestTask"
        assert metadata.description == "Sends digests."
        assert metadata.payload_model is SendDigestPayload
        assert metadata.priority == JobPriority.LOW
        assert metadata.max_retries == 5
        assert isinstance(registry.get_handler("send-digest"), DigestTask)

    def test_handler_instance_is_cached(self, registry, register):
        handler = register("generate-post", lambda payload, ctx: None)

        assert registry.get_handler("generate-post") is handler
        assert registry.get_handler("generate-post") is handler

    def test_unknown_type(self, registry):
        assert registry.get_handler("nope") is None
        assert registry.get_metadata("nope") is None
        assert "nope" not in registry

    def test_explicit_metadata(self, registry, register):
        metadata = JobMetadata(job_type="x", name="X", enabled=False)
        registry.register("x", metadata=metadata)(BaseTask)

        assert registry.get_metadata("x") is metadata
        assert "x" in registry.list_jobs()
        assert "x" not in registry.list_enabled_jobs()

    def test_clear(self, registry, register):
        register("generate-post", lambda payload, ctx: None)

        registry.clear()

        assert registry.list_jobs() == {}

    def test_registries_are_independent(self, register):
        other = JobRegistry()
        register("generate-post", lambda payload, ctx: None)

        assert "generate-post" not in other
