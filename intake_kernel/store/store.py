"""
Intake Store — the row-oriented persistence collaborator.

Every entity is stored as its full JSON record next to the handful of
columns it is looked up by. Uniqueness constraints, not locks, are what make
concurrent ingestion and commit requests converge on a single row.

Behavioral Contract:
- Turns, summaries, checkpoints and contract versions are never edited after
  their terminal state; new understanding is written as a new row.
- Decision items are upserted by (project_id, cycle_no, decision_key).
- A contract version, its documents, claims and provenance are written in a
  single transaction, so readers never see a half-populated version.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set, Tuple, Type, TypeVar

from pydantic import BaseModel

from intake_kernel.models.artifact import (
    ArtifactIngestRun,
    ArtifactInput,
    ArtifactPage,
    ArtifactSummary,
)
from intake_kernel.models.checkpoint import Checkpoint, CheckpointStatus
from intake_kernel.models.contract import (
    ContractDoc,
    ContractVersion,
    ProvenanceLink,
)
from intake_kernel.models.decision import DecisionItem
from intake_kernel.models.turn import Actor, Project, Turn
from intake_kernel.util import canonical_json, new_id, sha256_hex, utc_now

M = TypeVar("M", bound=BaseModel)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        owner_user_id TEXT NOT NULL,
        record_json TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS turns (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        cycle_no INTEGER NOT NULL,
        turn_index INTEGER NOT NULL,
        actor TEXT NOT NULL,
        record_json TEXT NOT NULL,
        UNIQUE (project_id, cycle_no, turn_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS decision_items (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        cycle_no INTEGER NOT NULL,
        decision_key TEXT NOT NULL,
        record_json TEXT NOT NULL,
        UNIQUE (project_id, cycle_no, decision_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS artifact_inputs (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        cycle_no INTEGER NOT NULL,
        type TEXT NOT NULL,
        reference TEXT NOT NULL,
        record_json TEXT NOT NULL,
        UNIQUE (project_id, cycle_no, type, reference)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS artifact_ingest_runs (
        id TEXT PRIMARY KEY,
        artifact_input_id TEXT NOT NULL,
        idempotency_key TEXT NOT NULL UNIQUE,
        record_json TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS artifact_pages (
        id TEXT PRIMARY KEY,
        artifact_input_id TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        record_json TEXT NOT NULL,
        UNIQUE (artifact_input_id, content_hash)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS artifact_summaries (
        id TEXT PRIMARY KEY,
        artifact_input_id TEXT NOT NULL,
        version INTEGER NOT NULL,
        record_json TEXT NOT NULL,
        UNIQUE (artifact_input_id, version)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS checkpoints (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        cycle_no INTEGER NOT NULL,
        checkpoint_key TEXT NOT NULL,
        status TEXT NOT NULL,
        record_json TEXT NOT NULL,
        UNIQUE (project_id, cycle_no, checkpoint_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS contract_versions (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        cycle_no INTEGER NOT NULL,
        version_number INTEGER NOT NULL,
        input_fingerprint TEXT NOT NULL,
        record_json TEXT NOT NULL,
        UNIQUE (project_id, cycle_no, input_fingerprint),
        UNIQUE (project_id, cycle_no, version_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS contract_docs (
        id TEXT PRIMARY KEY,
        contract_version_id TEXT NOT NULL,
        role_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        body TEXT NOT NULL,
        UNIQUE (contract_version_id, role_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS requirements (
        id TEXT PRIMARY KEY,
        contract_doc_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        claim TEXT NOT NULL,
        trust_label TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS provenance_links (
        id TEXT PRIMARY KEY,
        requirement_id TEXT NOT NULL,
        ref TEXT NOT NULL,
        source_type TEXT NOT NULL,
        source_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_events (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        cycle_no INTEGER NOT NULL,
        event_type TEXT NOT NULL,
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS readiness_snapshots (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        cycle_no INTEGER NOT NULL,
        turn_id TEXT,
        score INTEGER NOT NULL,
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS doc_strength_snapshots (
        id TEXT PRIMARY KEY,
        contract_version_id TEXT NOT NULL,
        mode TEXT NOT NULL,
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS interview_turn_states (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        cycle_no INTEGER NOT NULL,
        turn_id TEXT NOT NULL,
        branch TEXT NOT NULL,
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS semantic_entries (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        cycle_no INTEGER NOT NULL,
        turn_id TEXT NOT NULL,
        content TEXT NOT NULL,
        embedding_json TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_turns_cycle ON turns(project_id, cycle_no)",
    "CREATE INDEX IF NOT EXISTS idx_decisions_cycle ON decision_items(project_id, cycle_no)",
    "CREATE INDEX IF NOT EXISTS idx_checkpoints_status ON checkpoints(project_id, cycle_no, status)",
    "CREATE INDEX IF NOT EXISTS idx_audit_cycle ON audit_events(project_id, cycle_no)",
]


class IntakeStore:
    """
    SQLite-backed store for every intake entity.
    Prototype: SQLite. Production: PostgreSQL with the same unique keys.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create all tables and indexes if they don't exist."""
        with self._lock, self._conn:
            for statement in _SCHEMA:
                self._conn.execute(statement)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """One atomic unit of work. Rolls back on any exception."""
        with self._lock, self._conn:
            yield self._conn

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    @staticmethod
    def _load(model: Type[M], row: Optional[sqlite3.Row]) -> Optional[M]:
        return model.model_validate_json(row["record_json"]) if row else None

    @staticmethod
    def _dump(record: BaseModel) -> str:
        return json.dumps(record.model_dump(mode="json"), default=str)

    # === PROJECTS ===

    def create_project(self, owner_user_id: str, name: str = "") -> Project:
        project = Project(
            id=new_id("proj"),
            owner_user_id=owner_user_id,
            name=name,
            created_at=utc_now(),
        )
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO projects (id, owner_user_id, record_json) VALUES (?, ?, ?)",
                (project.id, owner_user_id, self._dump(project)),
            )
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        row = self._fetchone("SELECT record_json FROM projects WHERE id = ?", (project_id,))
        return self._load(Project, row)

    # === TURNS ===

    def append_turn(self, project_id: str, cycle_no: int, actor: Actor, raw_text: str) -> Turn:
        """Append a turn with the next turn_index for the cycle."""
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(turn_index), 0) AS last FROM turns "
                "WHERE project_id = ? AND cycle_no = ?",
                (project_id, cycle_no),
            ).fetchone()
            turn = Turn(
                id=new_id("turn"),
                project_id=project_id,
                cycle_no=cycle_no,
                turn_index=row["last"] + 1,
                actor=actor,
                raw_text=raw_text,
                created_at=utc_now(),
            )
            conn.execute(
                "INSERT INTO turns (id, project_id, cycle_no, turn_index, actor, record_json) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (turn.id, project_id, cycle_no, turn.turn_index, actor.value, self._dump(turn)),
            )
        return turn

    def list_turns(self, project_id: str, cycle_no: int) -> List[Turn]:
        rows = self._fetchall(
            "SELECT record_json FROM turns WHERE project_id = ? AND cycle_no = ? "
            "ORDER BY turn_index",
            (project_id, cycle_no),
        )
        return [self._load(Turn, r) for r in rows]

    # === DECISIONS ===

    def get_decision(self, project_id: str, cycle_no: int, decision_key: str) -> Optional[DecisionItem]:
        row = self._fetchone(
            "SELECT record_json FROM decision_items "
            "WHERE project_id = ? AND cycle_no = ? AND decision_key = ?",
            (project_id, cycle_no, decision_key),
        )
        return self._load(DecisionItem, row)

    def list_decisions(self, project_id: str, cycle_no: int) -> List[DecisionItem]:
        rows = self._fetchall(
            "SELECT record_json FROM decision_items WHERE project_id = ? AND cycle_no = ? "
            "ORDER BY decision_key",
            (project_id, cycle_no),
        )
        return [self._load(DecisionItem, r) for r in rows]

    def save_decision(self, item: DecisionItem) -> DecisionItem:
        """Upsert by (project_id, cycle_no, decision_key); the row id survives replacement."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO decision_items (id, project_id, cycle_no, decision_key, record_json)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (project_id, cycle_no, decision_key)
                DO UPDATE SET record_json = excluded.record_json
                """,
                (item.id, item.project_id, item.cycle_no, item.decision_key, self._dump(item)),
            )
        return item

    # === ARTIFACTS ===

    def get_or_create_artifact(
        self, project_id: str, cycle_no: int, artifact_type: str, reference: str
    ) -> ArtifactInput:
        artifact = ArtifactInput(
            id=new_id("art"),
            project_id=project_id,
            cycle_no=cycle_no,
            type=artifact_type,
            reference=reference,
            updated_at=utc_now(),
        )
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO artifact_inputs "
                "(id, project_id, cycle_no, type, reference, record_json) VALUES (?, ?, ?, ?, ?, ?)",
                (artifact.id, project_id, cycle_no, artifact_type, reference, self._dump(artifact)),
            )
            row = conn.execute(
                "SELECT record_json FROM artifact_inputs "
                "WHERE project_id = ? AND cycle_no = ? AND type = ? AND reference = ?",
                (project_id, cycle_no, artifact_type, reference),
            ).fetchone()
        return self._load(ArtifactInput, row)

    def get_artifact(self, artifact_id: str) -> Optional[ArtifactInput]:
        row = self._fetchone("SELECT record_json FROM artifact_inputs WHERE id = ?", (artifact_id,))
        return self._load(ArtifactInput, row)

    def latest_artifact(self, project_id: str, cycle_no: int) -> Optional[ArtifactInput]:
        row = self._fetchone(
            "SELECT record_json FROM artifact_inputs WHERE project_id = ? AND cycle_no = ? "
            "ORDER BY rowid DESC LIMIT 1",
            (project_id, cycle_no),
        )
        return self._load(ArtifactInput, row)

    def save_artifact(self, artifact: ArtifactInput) -> ArtifactInput:
        artifact.updated_at = utc_now()
        with self.transaction() as conn:
            conn.execute(
                "UPDATE artifact_inputs SET record_json = ? WHERE id = ?",
                (self._dump(artifact), artifact.id),
            )
        return artifact

    def get_run_by_key(self, idempotency_key: str) -> Optional[ArtifactIngestRun]:
        row = self._fetchone(
            "SELECT record_json FROM artifact_ingest_runs WHERE idempotency_key = ?",
            (idempotency_key,),
        )
        return self._load(ArtifactIngestRun, row)

    def insert_run(self, run: ArtifactIngestRun) -> Tuple[ArtifactIngestRun, bool]:
        """
        Insert an ingest run. Returns (run, created). A concurrent writer that
        got there first wins; its row is returned with created=False.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO artifact_ingest_runs "
                "(id, artifact_input_id, idempotency_key, record_json) VALUES (?, ?, ?, ?)",
                (run.id, run.artifact_input_id, run.idempotency_key, self._dump(run)),
            )
            created = cursor.rowcount == 1
        if created:
            return run, True
        return self.get_run_by_key(run.idempotency_key), False

    def replace_run(self, run: ArtifactIngestRun) -> ArtifactIngestRun:
        """Overwrite a run on forced refresh; the idempotency key stays the same."""
        with self.transaction() as conn:
            conn.execute(
                "UPDATE artifact_ingest_runs SET id = ?, record_json = ? WHERE idempotency_key = ?",
                (run.id, self._dump(run), run.idempotency_key),
            )
        return run

    def count_runs(self, artifact_input_id: str) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS cnt FROM artifact_ingest_runs WHERE artifact_input_id = ?",
            (artifact_input_id,),
        )
        return row["cnt"]

    def get_or_create_page(self, artifact_input_id: str, url: str, text: str) -> ArtifactPage:
        """Raw extracted text is stored once per distinct content per artifact."""
        page = ArtifactPage(
            id=new_id("page"),
            artifact_input_id=artifact_input_id,
            url=url,
            content_hash=sha256_hex(text),
            extracted_text=text,
            created_at=utc_now(),
        )
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO artifact_pages "
                "(id, artifact_input_id, content_hash, record_json) VALUES (?, ?, ?, ?)",
                (page.id, artifact_input_id, page.content_hash, self._dump(page)),
            )
            row = conn.execute(
                "SELECT record_json FROM artifact_pages WHERE artifact_input_id = ? AND content_hash = ?",
                (artifact_input_id, page.content_hash),
            ).fetchone()
        return self._load(ArtifactPage, row)

    def append_summary(
        self,
        artifact_input_id: str,
        summary_text: str,
        confidence: float,
        source_page_ids: List[str],
        generated_by: str,
    ) -> ArtifactSummary:
        """Append the next summary version for an artifact."""
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(version), 0) AS last FROM artifact_summaries "
                "WHERE artifact_input_id = ?",
                (artifact_input_id,),
            ).fetchone()
            summary = ArtifactSummary(
                id=new_id("sum"),
                artifact_input_id=artifact_input_id,
                version=row["last"] + 1,
                summary_text=summary_text,
                confidence=confidence,
                source_page_ids=source_page_ids,
                generated_by=generated_by,
                created_at=utc_now(),
            )
            conn.execute(
                "INSERT INTO artifact_summaries (id, artifact_input_id, version, record_json) "
                "VALUES (?, ?, ?, ?)",
                (summary.id, artifact_input_id, summary.version, self._dump(summary)),
            )
        return summary

    def get_summary(self, summary_id: str) -> Optional[ArtifactSummary]:
        row = self._fetchone("SELECT record_json FROM artifact_summaries WHERE id = ?", (summary_id,))
        return self._load(ArtifactSummary, row)

    def list_summaries(self, artifact_input_id: str) -> List[ArtifactSummary]:
        rows = self._fetchall(
            "SELECT record_json FROM artifact_summaries WHERE artifact_input_id = ? ORDER BY version",
            (artifact_input_id,),
        )
        return [self._load(ArtifactSummary, r) for r in rows]

    # === CHECKPOINTS ===

    def insert_checkpoint(self, checkpoint: Checkpoint) -> Checkpoint:
        """Get-or-create on (project, cycle, checkpoint_key)."""
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO checkpoints "
                "(id, project_id, cycle_no, checkpoint_key, status, record_json) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    checkpoint.id,
                    checkpoint.project_id,
                    checkpoint.cycle_no,
                    checkpoint.checkpoint_key,
                    checkpoint.status.value,
                    self._dump(checkpoint),
                ),
            )
            row = conn.execute(
                "SELECT record_json FROM checkpoints "
                "WHERE project_id = ? AND cycle_no = ? AND checkpoint_key = ?",
                (checkpoint.project_id, checkpoint.cycle_no, checkpoint.checkpoint_key),
            ).fetchone()
        return self._load(Checkpoint, row)

    def save_checkpoint(self, checkpoint: Checkpoint) -> Checkpoint:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE checkpoints SET status = ?, record_json = ? WHERE id = ?",
                (checkpoint.status.value, self._dump(checkpoint), checkpoint.id),
            )
        return checkpoint

    def get_checkpoint(self, checkpoint_id: str) -> Optional[Checkpoint]:
        row = self._fetchone("SELECT record_json FROM checkpoints WHERE id = ?", (checkpoint_id,))
        return self._load(Checkpoint, row)

    def pending_checkpoint(self, project_id: str, cycle_no: int) -> Optional[Checkpoint]:
        row = self._fetchone(
            "SELECT record_json FROM checkpoints WHERE project_id = ? AND cycle_no = ? AND status = ? "
            "ORDER BY rowid DESC LIMIT 1",
            (project_id, cycle_no, CheckpointStatus.PENDING.value),
        )
        return self._load(Checkpoint, row)

    def list_checkpoints(self, project_id: str, cycle_no: int) -> List[Checkpoint]:
        rows = self._fetchall(
            "SELECT record_json FROM checkpoints WHERE project_id = ? AND cycle_no = ? ORDER BY rowid",
            (project_id, cycle_no),
        )
        return [self._load(Checkpoint, r) for r in rows]

    # === CONTRACTS ===

    def get_version_by_fingerprint(
        self, project_id: str, cycle_no: int, fingerprint: str
    ) -> Optional[ContractVersion]:
        row = self._fetchone(
            "SELECT record_json FROM contract_versions "
            "WHERE project_id = ? AND cycle_no = ? AND input_fingerprint = ?",
            (project_id, cycle_no, fingerprint),
        )
        return self._load(ContractVersion, row)

    def get_version(self, version_id: str) -> Optional[ContractVersion]:
        row = self._fetchone("SELECT record_json FROM contract_versions WHERE id = ?", (version_id,))
        return self._load(ContractVersion, row)

    def list_versions(self, project_id: str, cycle_no: int) -> List[ContractVersion]:
        rows = self._fetchall(
            "SELECT record_json FROM contract_versions WHERE project_id = ? AND cycle_no = ? "
            "ORDER BY version_number",
            (project_id, cycle_no),
        )
        return [self._load(ContractVersion, r) for r in rows]

    def persist_contract(
        self,
        project_id: str,
        cycle_no: int,
        fingerprint: str,
        mode: str,
        engine_version: str,
        docs: List[ContractDoc],
    ) -> Tuple[ContractVersion, bool]:
        """
        Write version, documents, claims and provenance atomically.

        Returns (version, created). If another commit with the same fingerprint
        landed first, nothing is written and that version is returned.
        """
        try:
            with self.transaction() as conn:
                row = conn.execute(
                    "SELECT COALESCE(MAX(version_number), 0) AS last FROM contract_versions "
                    "WHERE project_id = ? AND cycle_no = ?",
                    (project_id, cycle_no),
                ).fetchone()
                version = ContractVersion(
                    id=new_id("cv"),
                    project_id=project_id,
                    cycle_no=cycle_no,
                    version_number=row["last"] + 1,
                    input_fingerprint=fingerprint,
                    mode=mode,
                    engine_version=engine_version,
                    created_at=utc_now(),
                )
                conn.execute(
                    "INSERT INTO contract_versions "
                    "(id, project_id, cycle_no, version_number, input_fingerprint, record_json) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        version.id,
                        project_id,
                        cycle_no,
                        version.version_number,
                        fingerprint,
                        self._dump(version),
                    ),
                )
                for doc in docs:
                    doc_id = new_id("doc")
                    conn.execute(
                        "INSERT INTO contract_docs (id, contract_version_id, role_id, title, body) "
                        "VALUES (?, ?, ?, ?, ?)",
                        (doc_id, version.id, doc.role_id, doc.title, doc.body),
                    )
                    for position, claim in enumerate(doc.claims):
                        req_id = new_id("req")
                        conn.execute(
                            "INSERT INTO requirements (id, contract_doc_id, position, claim, trust_label) "
                            "VALUES (?, ?, ?, ?, ?)",
                            (req_id, doc_id, position, claim.claim, claim.trust_label),
                        )
                        for ref in claim.provenance_refs:
                            link = ProvenanceLink.from_ref(ref)
                            conn.execute(
                                "INSERT INTO provenance_links "
                                "(id, requirement_id, ref, source_type, source_id) VALUES (?, ?, ?, ?, ?)",
                                (new_id("prov"), req_id, link.ref, link.source_type.value, link.source_id),
                            )
        except sqlite3.IntegrityError:
            existing = self.get_version_by_fingerprint(project_id, cycle_no, fingerprint)
            if existing is None:
                raise
            return existing, False
        return version, True

    def get_docs(self, version_id: str) -> List[ContractDoc]:
        """Rebuild the committed documents of a version, claims and refs included."""
        doc_rows = self._fetchall(
            "SELECT id, role_id, title, body FROM contract_docs WHERE contract_version_id = ? "
            "ORDER BY role_id",
            (version_id,),
        )
        docs = []
        for doc_row in doc_rows:
            claims = []
            req_rows = self._fetchall(
                "SELECT id, claim, trust_label FROM requirements WHERE contract_doc_id = ? "
                "ORDER BY position",
                (doc_row["id"],),
            )
            for req_row in req_rows:
                refs = [
                    r["ref"]
                    for r in self._fetchall(
                        "SELECT ref FROM provenance_links WHERE requirement_id = ? ORDER BY rowid",
                        (req_row["id"],),
                    )
                ]
                claims.append({
                    "claim": req_row["claim"],
                    "trust_label": req_row["trust_label"],
                    "provenance_refs": refs,
                })
            docs.append(ContractDoc(
                role_id=doc_row["role_id"],
                title=doc_row["title"],
                body=doc_row["body"],
                claims=claims,
            ))
        return docs

    # === REFERENCES ===

    def known_refs(self, project_id: str, cycle_no: int) -> Set[str]:
        """Every provenance ref that resolves to a stored row in this cycle."""
        refs: Set[str] = set()
        for row in self._fetchall(
            "SELECT id FROM turns WHERE project_id = ? AND cycle_no = ?", (project_id, cycle_no)
        ):
            refs.add(f"turn:{row['id']}")
        for row in self._fetchall(
            "SELECT id FROM decision_items WHERE project_id = ? AND cycle_no = ?", (project_id, cycle_no)
        ):
            refs.add(f"decision:{row['id']}")
        artifact_rows = self._fetchall(
            "SELECT id FROM artifact_inputs WHERE project_id = ? AND cycle_no = ?", (project_id, cycle_no)
        )
        for artifact_row in artifact_rows:
            for row in self._fetchall(
                "SELECT id FROM artifact_pages WHERE artifact_input_id = ?", (artifact_row["id"],)
            ):
                refs.add(f"artifact_page:{row['id']}")
            for row in self._fetchall(
                "SELECT id FROM artifact_summaries WHERE artifact_input_id = ?", (artifact_row["id"],)
            ):
                refs.add(f"artifact_summary:{row['id']}")
        return refs

    # === AUDIT & SNAPSHOTS ===

    def record_audit(self, project_id: str, cycle_no: int, event_type: str, payload: dict) -> str:
        event_id = new_id("evt")
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO audit_events (id, project_id, cycle_no, event_type, payload_json, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (event_id, project_id, cycle_no, event_type, canonical_json(payload), utc_now().isoformat()),
            )
        return event_id

    def list_audit(self, project_id: str, cycle_no: int, event_type: Optional[str] = None) -> List[Dict]:
        if event_type:
            rows = self._fetchall(
                "SELECT * FROM audit_events WHERE project_id = ? AND cycle_no = ? AND event_type = ? "
                "ORDER BY rowid",
                (project_id, cycle_no, event_type),
            )
        else:
            rows = self._fetchall(
                "SELECT * FROM audit_events WHERE project_id = ? AND cycle_no = ? ORDER BY rowid",
                (project_id, cycle_no),
            )
        return [
            {
                "id": r["id"],
                "event_type": r["event_type"],
                "payload": json.loads(r["payload_json"]),
                "created_at": r["created_at"],
            }
            for r in rows
        ]

    def record_readiness_snapshot(
        self, project_id: str, cycle_no: int, turn_id: Optional[str], score: int, payload: dict
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO readiness_snapshots "
                "(id, project_id, cycle_no, turn_id, score, payload_json, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (new_id("rdy"), project_id, cycle_no, turn_id, score, canonical_json(payload),
                 utc_now().isoformat()),
            )

    def record_doc_strength(self, contract_version_id: str, mode: str, payload: list) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO doc_strength_snapshots "
                "(id, contract_version_id, mode, payload_json, created_at) VALUES (?, ?, ?, ?, ?)",
                (new_id("dss"), contract_version_id, mode, canonical_json(payload), utc_now().isoformat()),
            )

    def get_doc_strength(self, contract_version_id: str) -> Optional[list]:
        row = self._fetchone(
            "SELECT payload_json FROM doc_strength_snapshots WHERE contract_version_id = ? "
            "ORDER BY rowid DESC LIMIT 1",
            (contract_version_id,),
        )
        return json.loads(row["payload_json"]) if row else None

    def record_interview_state(
        self, project_id: str, cycle_no: int, turn_id: str, branch: str, payload: dict
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO interview_turn_states "
                "(id, project_id, cycle_no, turn_id, branch, payload_json, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (new_id("its"), project_id, cycle_no, turn_id, branch, canonical_json(payload),
                 utc_now().isoformat()),
            )

    def record_semantic_entry(
        self, project_id: str, cycle_no: int, turn_id: str, content: str, embedding: List[float]
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO semantic_entries (id, project_id, cycle_no, turn_id, content, embedding_json) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (new_id("sem"), project_id, cycle_no, turn_id, content, json.dumps(embedding)),
            )

    def count(self, table: str) -> int:
        """Row count for a known table (used by tests and health checks)."""
        if table not in _TABLES:
            raise ValueError(f"Unknown table: {table}")
        row = self._fetchone(f"SELECT COUNT(*) AS cnt FROM {table}")
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


_TABLES = {
    "projects", "turns", "decision_items", "artifact_inputs", "artifact_ingest_runs",
    "artifact_pages", "artifact_summaries", "checkpoints", "contract_versions",
    "contract_docs", "requirements", "provenance_links", "audit_events",
    "readiness_snapshots", "doc_strength_snapshots", "interview_turn_states",
    "semantic_entries",
}
