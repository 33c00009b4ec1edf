from collections.abc import Sequence
from urllib.parse import urlsplit

from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult
from opentelemetry.util.types import Attributes

from . import TURN_SPAN_NAME

# Set of LLM provider names used in OpenTelemetry attributes
# See https://opentelemetry.io/docs/specs/semconv/registry/attributes/gen-ai/#gen-ai-provider-name
LLM_PROVIDER_NAMES = {
    "anthropic",
    "aws.bedrock",
    "azure.ai.inference",
    "azure.ai.openai",
    "cohere",
    "deepseek",
    "gcp.gemini",
    "gcp.gen_ai",
    "gcp.vertex_ai",
    "groq",
    "ibm.watsonx.ai",
    "mistral_ai",
    "openai",
    "perplexity",
    "x_ai",
    "chatfold.relay",
}

CLOUD_METADATA_HOSTS = {"metadata.google.internal"}


class FilteringExporter(SpanExporter):
    """
    Forwards only spans that describe model traffic.

    A span is kept when it is a chatfold turn or carries a known
    ``gen_ai.provider.name`` (or legacy ``gen_ai.system``). HTTP spans to
    cloud metadata hosts are always dropped.
    """

    def __init__(
        self,
        inner: SpanExporter,
        provider_names: set[str] | None = None,
        blocked_hosts: set[str] | None = None,
    ):
        self._inner = inner
        self._provider_names = (
            LLM_PROVIDER_NAMES if provider_names is None else provider_names
        )
        self._blocked_hosts = (
            CLOUD_METADATA_HOSTS if blocked_hosts is None else blocked_hosts
        )

    def _is_blocked(self, attrs: Attributes) -> bool:
        attrs = attrs or {}
        for name in ("http.url", "url.full"):
            url = attrs.get(name)
            if isinstance(url, str) and urlsplit(url).hostname in self._blocked_hosts:
                return True
        return False

    def _is_model_span(self, span: ReadableSpan) -> bool:
        if span.name == TURN_SPAN_NAME:
            return True
        attrs = span.attributes or {}
        for name in ("gen_ai.provider.name", "gen_ai.system"):
            value = attrs.get(name)
            if value and value in self._provider_names:
                return True
        return False

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        keep = [
            s for s in spans if self._is_model_span(s) and not self._is_blocked(s.attributes)
        ]
        return SpanExportResult.SUCCESS if not keep else self._inner.export(keep)

    def shutdown(self) -> None:
        self._inner.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self._inner.force_flush(timeout_millis)
