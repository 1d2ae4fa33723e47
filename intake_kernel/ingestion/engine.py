"""
Artifact Ingestor — canonicalize, dedupe, fetch, extract, summarize, persist.

Behavioral Contract:
- Blocked or malformed references fail before any network access.
- An ingest run is keyed by hash(project, cycle, canonical URL, limits
  version, engine version). A matching prior run is reused unless
  force_refresh is set; concurrent identical requests converge on one row.
- Each successful ingestion appends a new summary version and resets the
  artifact to unverified, since the user has not seen this understanding.
- Failures are recorded on the artifact and returned as a status message;
  they never raise.
"""

import logging
from typing import Optional, Tuple

from intake_kernel.config import IntakeSettings
from intake_kernel.ingestion.extract import extract_text, summarize
from intake_kernel.ingestion.fetcher import WebFetcher
from intake_kernel.ingestion.urls import canonicalize_url
from intake_kernel.llm.provider import LLMProvider
from intake_kernel.models.artifact import (
    ArtifactIngestRun,
    ArtifactInput,
    IngestResult,
    IngestState,
    VerificationState,
)
from intake_kernel.store.store import IntakeStore
from intake_kernel.util import new_id, sha256_hex, utc_now

logger = logging.getLogger(__name__)

_FAILURE_HINTS = {
    "INVALID_URL": "the link must be a full https:// address",
    "HOST_BLOCKED": "that host is private or local and cannot be fetched",
    "TIMEOUT": "the site took too long to respond",
    "UNSUPPORTED_CONTENT_TYPE": "the link does not point to a readable web page",
    "EXTRACT_TOO_SMALL": "too little readable text was found on the page",
    "HTTP_STATUS_NOT_OK": "the site returned an error status",
}


def ingestion_idempotency_key(
    project_id: str, cycle_no: int, canonical_url: str, limits_version: str, engine_version: str
) -> str:
    return sha256_hex({
        "project_id": project_id,
        "cycle_no": cycle_no,
        "canonical_url": canonical_url,
        "limits_version": limits_version,
        "engine_version": engine_version,
    })


def build_artifact_status_message(result: IngestResult) -> str:
    """Human-readable line describing the ingestion outcome."""
    if result.state == IngestState.FAILED:
        hint = _FAILURE_HINTS.get(result.error_code or "", "the page could not be read")
        return (
            f"Website ingestion degraded ({result.error_code}): {hint}. "
            "We can continue without it, you can paste key text, or retry with a forced refresh."
        )
    if result.state == IngestState.PARTIAL:
        return (
            "Website content was ingested partially (the page was too large and was truncated). "
            "Please check the summary carefully."
        )
    if result.reused:
        return "Website content was already ingested; reusing the stored understanding."
    return "Website content ingested. Please confirm the summary before we continue."


class ArtifactIngestor:
    """Runs one ingestion step for an artifact input."""

    def __init__(
        self,
        store: IntakeStore,
        fetcher: WebFetcher,
        llm: LLMProvider,
        settings: IntakeSettings,
    ):
        self.store = store
        self.fetcher = fetcher
        self.llm = llm
        self.settings = settings

    @staticmethod
    def requires_ingestion(artifact: ArtifactInput, force_refresh: bool) -> bool:
        return (
            force_refresh
            or artifact.ingest_state in (IngestState.PENDING, IngestState.FAILED)
            or not artifact.summary_text
        )

    def ingest(self, artifact: ArtifactInput, force_refresh: bool = False) -> IngestResult:
        canonical, error = canonicalize_url(artifact.reference)
        if error:
            return self._fail(artifact, error, canonical_url=None)

        key = ingestion_idempotency_key(
            artifact.project_id,
            artifact.cycle_no,
            canonical,
            self.settings.ingestion_limits_version,
            self.settings.engine_version,
        )

        prior = self.store.get_run_by_key(key)
        if prior and not force_refresh:
            logger.info("Reusing ingest run %s for %s", prior.id, canonical)
            return self._apply_run(artifact, prior, reused=True)

        outcome = self.fetcher.fetch(canonical)
        run = ArtifactIngestRun(
            id=new_id("run"),
            artifact_input_id=artifact.id,
            idempotency_key=key,
            canonical_url=canonical,
            final_url=outcome.final_url,
            outcome=IngestState.FAILED,
            http_status=outcome.http_status,
            content_type=outcome.content_type,
            bytes_read=outcome.bytes_read,
            redirect_count=outcome.redirect_count,
            truncated=outcome.truncated,
            error_code=outcome.error_code,
            created_at=utc_now(),
        )

        drafted = None
        if outcome.ok:
            text, extract_error = extract_text(
                outcome.body, outcome.content_type, self.settings.min_extract_chars
            )
            if extract_error:
                run.error_code = extract_error
            else:
                page = self.store.get_or_create_page(artifact.id, outcome.final_url or canonical, text)
                partial = outcome.truncated
                drafted = summarize(self.llm, outcome.final_url or canonical, text, partial)
                run.outcome = IngestState.PARTIAL if partial else IngestState.COMPLETE
                run.page_ids = [page.id]

        stored, owned = self._record_run(run, replace=prior is not None)
        if not owned:
            return self._apply_run(artifact, stored, reused=True)

        # Summaries are only written by the run that holds the key
        if drafted is not None:
            summary_text, confidence, generated_by = drafted
            summary = self.store.append_summary(
                artifact.id, summary_text, confidence, list(run.page_ids), generated_by
            )
            run.summary_id = summary.id
            stored = self.store.replace_run(run)
        return self._apply_run(artifact, stored, reused=False)

    def _record_run(self, run: ArtifactIngestRun, replace: bool) -> Tuple[ArtifactIngestRun, bool]:
        """Claim the idempotency key. Returns (stored run, whether this run owns it)."""
        if replace:
            return self.store.replace_run(run), True
        stored, created = self.store.insert_run(run)
        if not created:
            logger.info("Concurrent ingestion won for key %s; converging on run %s",
                        run.idempotency_key[:12], stored.id)
        return stored, created

    def _apply_run(self, artifact: ArtifactInput, run: ArtifactIngestRun, reused: bool) -> IngestResult:
        """Reflect a run's outcome onto the artifact row and build the result."""
        artifact.canonical_url = run.canonical_url

        if run.outcome == IngestState.FAILED:
            return self._fail(artifact, run.error_code or "FETCH_ERROR", run.canonical_url,
                              run_id=run.id, reused=reused)

        summary = self.store.get_summary(run.summary_id) if run.summary_id else None
        if summary and (artifact.ingest_run_id != run.id or artifact.summary_version != summary.version):
            artifact.summary_text = summary.summary_text
            artifact.summary_version = summary.version
            artifact.verification_state = VerificationState.UNVERIFIED
        artifact.ingest_run_id = run.id
        artifact.ingest_state = run.outcome
        artifact.error_code = None
        self.store.save_artifact(artifact)

        refs = [f"artifact_page:{page_id}" for page_id in run.page_ids]
        if summary:
            refs.append(f"artifact_summary:{summary.id}")

        result = IngestResult(
            state=run.outcome,
            summary_text=artifact.summary_text,
            provenance_refs=refs,
            ingest_run_id=run.id,
            summary_version=artifact.summary_version,
            reused=reused,
        )
        result.status_message = build_artifact_status_message(result)
        if not reused:
            self.store.record_audit(artifact.project_id, artifact.cycle_no, "artifact.ingested", {
                "artifact_input_id": artifact.id,
                "ingest_run_id": run.id,
                "canonical_url": run.canonical_url,
                "state": run.outcome.value,
                "summary_version": artifact.summary_version,
                "bytes_read": run.bytes_read,
                "redirect_count": run.redirect_count,
                "truncated": run.truncated,
            })
            logger.info("Ingested %s (%s, summary v%d)", run.canonical_url, run.outcome.value,
                        artifact.summary_version)
        return result

    def _fail(
        self,
        artifact: ArtifactInput,
        error_code: str,
        canonical_url: Optional[str],
        run_id: Optional[str] = None,
        reused: bool = False,
    ) -> IngestResult:
        artifact.ingest_state = IngestState.FAILED
        artifact.error_code = error_code
        if run_id:
            artifact.ingest_run_id = run_id
        self.store.save_artifact(artifact)

        result = IngestResult(
            state=IngestState.FAILED,
            summary_text=artifact.summary_text,
            ingest_run_id=run_id,
            summary_version=artifact.summary_version,
            error_code=error_code,
            reused=reused,
        )
        result.status_message = build_artifact_status_message(result)
        if not reused:
            self.store.record_audit(artifact.project_id, artifact.cycle_no, "artifact.ingest_failed", {
                "artifact_input_id": artifact.id,
                "reference": artifact.reference,
                "canonical_url": canonical_url,
                "error_code": error_code,
                "ingest_run_id": run_id,
            })
            logger.warning("Ingestion failed for %s: %s", artifact.reference, error_code)
        return result
