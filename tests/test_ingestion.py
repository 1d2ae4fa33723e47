"""Tests for artifact ingestion: extraction, summaries, and run idempotency."""

import httpx

from intake_kernel.config import IntakeSettings
from intake_kernel.ingestion.engine import (
    ArtifactIngestor,
    build_artifact_status_message,
    ingestion_idempotency_key,
)
from intake_kernel.ingestion.extract import (
    EXTRACT_TOO_SMALL,
    extract_text,
    html_to_text,
    summarize,
)
from intake_kernel.ingestion.fetcher import WebFetcher
from intake_kernel.llm.provider import NullLLMProvider, StaticLLMProvider
from intake_kernel.models.artifact import ArtifactIngestRun, IngestState, VerificationState
from intake_kernel.store.store import IntakeStore
from intake_kernel.util import utc_now

BAKERY_HTML = """
<html><head><title>Sunrise Bakery</title><style>body { color: red; }</style></head>
<body>
<script>var tracking = true;</script>
<h1>Sunrise Bakery</h1>
<p>We bake sourdough bread and pastries every morning in our neighborhood shop.</p>
<p>Customers can pre-order cakes for birthdays and weddings &amp; pick them up on weekends.</p>
</body></html>
"""


def _make_ingestor(handler, llm=None, **overrides):
    settings = IntakeSettings(**overrides)
    store = IntakeStore(":memory:")
    client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=False)
    fetcher = WebFetcher(settings, client=client)
    return ArtifactIngestor(store, fetcher, llm or NullLLMProvider(), settings), store


def _html_handler(calls):
    def handler(request):
        calls.append(str(request.url))
        return httpx.Response(200, headers={"content-type": "text/html"}, text=BAKERY_HTML)
    return handler


class TestExtraction:
    def test_html_to_text_drops_scripts_and_styles(self):
        text = html_to_text(BAKERY_HTML)
        assert "tracking" not in text
        assert "color: red" not in text
        assert "sourdough bread" in text
        assert "weddings & pick" in text

    def test_too_small(self):
        text, error = extract_text("<p>Hi</p>", "text/html", 80)
        assert text == "Hi"
        assert error == EXTRACT_TOO_SMALL

    def test_plain_text_passthrough(self):
        text, error = extract_text("line one\n\n   line two", "text/plain", 5)
        assert error is None
        assert text == "line one\nline two"

    def test_summary_falls_back_without_llm(self):
        summary, confidence, generated_by = summarize(
            NullLLMProvider(), "https://a.example/", "First. Second. Third. Fourth.", partial=False
        )
        assert generated_by == "deterministic"
        assert confidence == 0.75
        assert "Fourth" not in summary

    def test_summary_uses_llm_when_usable(self):
        llm = StaticLLMProvider([{"summary": "A neighborhood bakery selling sourdough.", "confidence": 0.9}])
        summary, confidence, generated_by = summarize(llm, "https://a.example/", "text", partial=False)
        assert generated_by == "llm"
        assert confidence == 0.9
        assert summary == "A neighborhood bakery selling sourdough."

    def test_summary_survives_llm_failure(self):
        llm = StaticLLMProvider([RuntimeError("provider down")])
        _, _, generated_by = summarize(llm, "https://a.example/", "Some text here.", partial=True)
        assert generated_by == "deterministic"


class TestArtifactIngestor:
    def test_successful_ingest(self):
        calls = []
        ingestor, store = _make_ingestor(_html_handler(calls))
        pid = store.create_project("u").id
        artifact = store.get_or_create_artifact(pid, 1, "website", "https://Sunrise.example.com")

        result = ingestor.ingest(artifact)

        assert result.state == IngestState.COMPLETE
        assert result.summary_version == 1
        assert any(ref.startswith("artifact_page:") for ref in result.provenance_refs)
        assert any(ref.startswith("artifact_summary:") for ref in result.provenance_refs)

        stored = store.get_artifact(artifact.id)
        assert stored.canonical_url == "https://sunrise.example.com/"
        assert stored.verification_state == VerificationState.UNVERIFIED
        assert stored.summary_text
        assert len(store.list_audit(pid, 1, "artifact.ingested")) == 1

    def test_repeat_ingest_reuses_run(self):
        calls = []
        ingestor, store = _make_ingestor(_html_handler(calls))
        pid = store.create_project("u").id
        artifact = store.get_or_create_artifact(pid, 1, "website", "https://sunrise.example.com/")

        first = ingestor.ingest(artifact)
        second = ingestor.ingest(store.get_artifact(artifact.id))

        assert len(calls) == 1
        assert second.reused is True
        assert second.ingest_run_id == first.ingest_run_id
        assert store.count("artifact_ingest_runs") == 1
        assert store.count("artifact_summaries") == 1

    def test_force_refresh_fetches_again_and_versions_summary(self):
        calls = []
        ingestor, store = _make_ingestor(_html_handler(calls))
        pid = store.create_project("u").id
        artifact = store.get_or_create_artifact(pid, 1, "website", "https://sunrise.example.com/")

        ingestor.ingest(artifact)
        refreshed = ingestor.ingest(store.get_artifact(artifact.id), force_refresh=True)

        assert len(calls) == 2
        assert refreshed.summary_version == 2
        assert store.count("artifact_ingest_runs") == 1
        assert store.count("artifact_pages") == 1  # Same content hash

    def test_blocked_host_fails_without_fetch_or_run(self):
        calls = []
        ingestor, store = _make_ingestor(_html_handler(calls))
        pid = store.create_project("u").id
        artifact = store.get_or_create_artifact(pid, 1, "website", "https://192.168.0.10/")

        result = ingestor.ingest(artifact)

        assert result.state == IngestState.FAILED
        assert result.error_code == "HOST_BLOCKED"
        assert calls == []
        assert store.count("artifact_ingest_runs") == 0
        assert "HOST_BLOCKED" in result.status_message
        assert store.get_artifact(artifact.id).ingest_state == IngestState.FAILED

    def test_thin_page_is_a_degraded_run(self):
        ingestor, store = _make_ingestor(
            lambda request: httpx.Response(200, headers={"content-type": "text/html"}, text="<p>Hi</p>")
        )
        pid = store.create_project("u").id
        artifact = store.get_or_create_artifact(pid, 1, "website", "https://thin.example.com/")

        result = ingestor.ingest(artifact)

        assert result.state == IngestState.FAILED
        assert result.error_code == EXTRACT_TOO_SMALL
        assert store.count("artifact_ingest_runs") == 1
        assert store.count("artifact_summaries") == 0
        assert len(store.list_audit(pid, 1, "artifact.ingest_failed")) == 1

    def test_truncated_body_is_partial(self):
        big = "<p>" + ("Fresh bread daily. " * 400) + "</p>"
        ingestor, store = _make_ingestor(
            lambda request: httpx.Response(200, headers={"content-type": "text/html"}, text=big),
            max_fetch_bytes=2000,
        )
        pid = store.create_project("u").id
        artifact = store.get_or_create_artifact(pid, 1, "website", "https://big.example.com/")

        result = ingestor.ingest(artifact)

        assert result.state == IngestState.PARTIAL
        assert "partially" in result.status_message

    def test_requires_ingestion(self):
        ingestor, store = _make_ingestor(_html_handler([]))
        pid = store.create_project("u").id
        artifact = store.get_or_create_artifact(pid, 1, "website", "https://sunrise.example.com/")
        assert ArtifactIngestor.requires_ingestion(artifact, force_refresh=False)

        ingestor.ingest(artifact)
        done = store.get_artifact(artifact.id)
        assert not ArtifactIngestor.requires_ingestion(done, force_refresh=False)
        assert ArtifactIngestor.requires_ingestion(done, force_refresh=True)

    def test_losing_a_concurrent_ingest_leaves_no_summary(self):
        def handler(request):
            # Another request claims the same key while this fetch is in flight
            store.insert_run(ArtifactIngestRun(
                id="run_other",
                artifact_input_id=artifact.id,
                idempotency_key=key,
                canonical_url="https://sunrise.example.com/",
                outcome=IngestState.FAILED,
                error_code="TIMEOUT",
                created_at=utc_now(),
            ))
            return httpx.Response(200, headers={"content-type": "text/html"}, text=BAKERY_HTML)

        ingestor, store = _make_ingestor(handler)
        pid = store.create_project("u").id
        artifact = store.get_or_create_artifact(pid, 1, "website", "https://sunrise.example.com/")
        key = ingestion_idempotency_key(
            pid, 1, "https://sunrise.example.com/",
            ingestor.settings.ingestion_limits_version, ingestor.settings.engine_version,
        )

        result = ingestor.ingest(artifact)

        assert result.ingest_run_id == "run_other"
        assert result.state == IngestState.FAILED
        assert result.reused is True
        assert store.count("artifact_ingest_runs") == 1
        assert store.count("artifact_summaries") == 0
        assert store.list_audit(pid, 1, "artifact.ingested") == []


def test_status_message_names_the_failure():
    from intake_kernel.models.artifact import IngestResult

    message = build_artifact_status_message(IngestResult(state=IngestState.FAILED, error_code="TIMEOUT"))
    assert message.startswith("Website ingestion degraded (TIMEOUT)")
