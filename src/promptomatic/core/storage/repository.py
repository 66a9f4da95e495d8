"""Prompt repository: saved prompts, the template library and teacher profiles.

The repository mediates between domain objects (StoredPrompt,
TeacherProfile) and the SQLite database. Blocks, tips and tags are stored
as JSON columns.

Every read or write of a teacher's own prompts is scoped by
``teacher_id``: a prompt owned by someone else behaves as if it did not
exist. Templates are prompts flagged ``is_template`` with an approved
status; using one clones it into the caller's library.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from promptomatic.core.storage.database import PromptDatabase
from promptomatic.core.storage.models import StoredPrompt
from promptomatic.domains.teaching.domain_logic.models import (
    AssembledPrompt,
    PromptBlock,
    TeacherProfile,
    parse_blocks,
    sort_blocks,
)

logger = logging.getLogger(__name__)

TEMPLATE_KINDS = ("official", "community")


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class PromptRepository:
    """CRUD repository for prompts, templates and teacher profiles.

    Usage::

        db = PromptDatabase(":memory:")
        db.initialize()
        repo = PromptRepository(db)

        prompt_id = repo.save_assembled(assembled, teacher_id="t1", language="fr")
        stored = repo.get_prompt(prompt_id, teacher_id="t1")
    """

    def __init__(self, database: PromptDatabase) -> None:
        self._db = database

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _dump_blocks(blocks: list[PromptBlock]) -> str:
        return json.dumps([b.to_dict() for b in sort_blocks(blocks)], ensure_ascii=False)

    def _fetch(self, where: str, params: tuple[Any, ...]) -> StoredPrompt | None:
        row = self._db.connection.execute(
            f"SELECT * FROM prompts WHERE {where}", params
        ).fetchone()
        return self._row_to_prompt(row) if row else None

    def _fetch_all(self, where: str, params: tuple[Any, ...]) -> list[StoredPrompt]:
        rows = self._db.connection.execute(
            f"SELECT * FROM prompts WHERE {where}", params
        ).fetchall()
        return [self._row_to_prompt(r) for r in rows]

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def save_prompt(self, prompt: StoredPrompt) -> str:
        """Persist a prompt and return its ID.

        If ``prompt.id`` is empty, a UUID is generated.
        """
        pid = prompt.id or self._new_id()
        now = prompt.created_at or self._now_iso()

        try:
            with self._db.transaction() as conn:
                conn.execute(
                    """INSERT INTO prompts (
                        id, teacher_id, name, language, source_type, original_text,
                        blocks_json, tips_json, tags_json,
                        model_recommendation, model_recommendation_reason,
                        is_template, template_id, template_kind, template_status,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        pid,
                        prompt.teacher_id,
                        prompt.name,
                        prompt.language,
                        prompt.source_type,
                        prompt.original_text,
                        self._dump_blocks(prompt.blocks),
                        json.dumps(prompt.tips, ensure_ascii=False),
                        json.dumps(prompt.tags, ensure_ascii=False),
                        prompt.model_recommendation,
                        prompt.model_recommendation_reason,
                        int(prompt.is_template),
                        prompt.template_id,
                        prompt.template_kind,
                        prompt.template_status,
                        now,
                        prompt.updated_at or now,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise RepositoryError(f"Prompt {pid} already exists") from exc
        logger.info("Saved prompt %s (teacher=%s, blocks=%d)", pid, prompt.teacher_id, len(prompt.blocks))
        return pid

    def save_assembled(
        self,
        assembled: AssembledPrompt,
        *,
        teacher_id: str,
        language: str,
        original_text: str = "",
    ) -> str:
        """Persist the terminal artifact of a conversation."""
        return self.save_prompt(
            StoredPrompt(
                id="",
                teacher_id=teacher_id,
                name=assembled.name or "Untitled prompt",
                language=language,
                blocks=list(assembled.blocks),
                tips=list(assembled.tips),
                tags=list(assembled.suggested_tags),
                source_type=assembled.source_type,
                original_text=original_text,
                model_recommendation=assembled.model_recommendation,
                model_recommendation_reason=assembled.model_recommendation_reason,
            )
        )

    def get_prompt(self, prompt_id: str, teacher_id: str | None = None) -> StoredPrompt | None:
        """Fetch a prompt; with ``teacher_id``, only if that teacher owns it."""
        if teacher_id is None:
            return self._fetch("id = ?", (prompt_id,))
        return self._fetch("id = ? AND teacher_id = ?", (prompt_id, teacher_id))

    def list_prompts(self, teacher_id: str, limit: int = 50) -> list[StoredPrompt]:
        """Most recently updated first."""
        return self._fetch_all(
            "teacher_id = ? ORDER BY updated_at DESC LIMIT ?", (teacher_id, limit)
        )

    def update_prompt(
        self,
        prompt_id: str,
        *,
        teacher_id: str,
        name: str | None = None,
        tags: list[str] | None = None,
        blocks: list[PromptBlock] | None = None,
        tips: list[str] | None = None,
    ) -> StoredPrompt:
        """Partial update: only the fields given are changed.

        Raises:
            RepositoryError: If nothing is given, the name is blank, or the
                teacher has no prompt with this ID.
        """
        sets: list[str] = []
        values: list[Any] = []
        if name is not None:
            if not name.strip():
                raise RepositoryError("Prompt name cannot be empty")
            sets.append("name = ?")
            values.append(name.strip())
        if tags is not None:
            sets.append("tags_json = ?")
            values.append(json.dumps(list(tags), ensure_ascii=False))
        if blocks is not None:
            sets.append("blocks_json = ?")
            values.append(self._dump_blocks(blocks))
        if tips is not None:
            sets.append("tips_json = ?")
            values.append(json.dumps(list(tips), ensure_ascii=False))
        if not sets:
            raise RepositoryError("Nothing to update")

        sets.append("updated_at = ?")
        values.extend([self._now_iso(), prompt_id, teacher_id])
        with self._db.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE prompts SET {', '.join(sets)} WHERE id = ? AND teacher_id = ?",
                values,
            )
        if cursor.rowcount == 0:
            raise RepositoryError(f"Prompt {prompt_id} not found")

        logger.info("Updated prompt %s", prompt_id)
        stored = self.get_prompt(prompt_id, teacher_id)
        if stored is None:
            raise RepositoryError(f"Prompt {prompt_id} not found")
        return stored

    def delete_prompt(self, prompt_id: str, *, teacher_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM prompts WHERE id = ? AND teacher_id = ?", (prompt_id, teacher_id)
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted prompt %s", prompt_id)
        return deleted

    def count_prompts(self) -> int:
        row = self._db.connection.execute("SELECT COUNT(*) FROM prompts").fetchone()
        return row[0]

    def _row_to_prompt(self, row: sqlite3.Row) -> StoredPrompt:
        try:
            blocks = parse_blocks(json.loads(row["blocks_json"]))
            tips = json.loads(row["tips_json"])
            tags = json.loads(row["tags_json"])
        except (json.JSONDecodeError, TypeError) as exc:
            raise RepositoryError(f"Corrupt prompt row {row['id']}") from exc
        return StoredPrompt(
            id=row["id"],
            teacher_id=row["teacher_id"],
            name=row["name"],
            language=row["language"],
            blocks=sort_blocks(blocks),
            tips=tips,
            tags=tags,
            source_type=row["source_type"],
            original_text=row["original_text"],
            model_recommendation=row["model_recommendation"],
            model_recommendation_reason=row["model_recommendation_reason"],
            is_template=bool(row["is_template"]),
            template_id=row["template_id"],
            template_kind=row["template_kind"],
            template_status=row["template_status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    # Template library
    # ------------------------------------------------------------------

    def list_templates(self, kind: str | None = None) -> list[StoredPrompt]:
        """Approved templates, most recently updated first."""
        if kind is None:
            return self._fetch_all(
                "is_template = 1 AND template_status = 'approved' ORDER BY updated_at DESC", ()
            )
        if kind not in TEMPLATE_KINDS:
            raise RepositoryError(f"Unknown template kind: {kind}")
        return self._fetch_all(
            """is_template = 1 AND template_status = 'approved' AND template_kind = ?
               ORDER BY updated_at DESC""",
            (kind,),
        )

    def get_template(self, template_id: str) -> StoredPrompt | None:
        return self._fetch(
            "id = ? AND is_template = 1 AND template_status = 'approved'", (template_id,)
        )

    def use_template(self, template_id: str, *, teacher_id: str) -> StoredPrompt:
        """Clone an approved template into ``teacher_id``'s library."""
        template = self.get_template(template_id)
        if template is None:
            raise RepositoryError(f"Template {template_id} not found")

        now = self._now_iso()
        new_id = self.save_prompt(
            StoredPrompt(
                id="",
                teacher_id=teacher_id,
                name=template.name,
                language=template.language,
                blocks=list(template.blocks),
                tips=list(template.tips),
                tags=list(template.tags),
                source_type=template.source_type,
                model_recommendation=template.model_recommendation,
                model_recommendation_reason=template.model_recommendation_reason,
                template_id=template.id,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info("Cloned template %s into prompt %s (teacher=%s)", template_id, new_id, teacher_id)
        cloned = self.get_prompt(new_id, teacher_id)
        if cloned is None:
            raise RepositoryError(f"Prompt {new_id} not found")
        return cloned

    def submit_template(self, prompt_id: str, *, teacher_id: str) -> StoredPrompt:
        """Propose one of the teacher's prompts as a community template."""
        prompt = self.get_prompt(prompt_id, teacher_id)
        if prompt is None:
            raise RepositoryError(f"Prompt {prompt_id} not found")
        if prompt.is_template:
            raise RepositoryError(f"Prompt {prompt_id} is already a template")
        return self._set_template_state(
            prompt_id, is_template=False, kind="community", status="pending"
        )

    def pending_templates(self) -> list[StoredPrompt]:
        """Community submissions awaiting review, oldest first."""
        return self._fetch_all(
            """template_kind = 'community' AND template_status = 'pending'
               ORDER BY updated_at ASC""",
            (),
        )

    def review_template(self, prompt_id: str, *, approve: bool) -> StoredPrompt:
        """Approve or reject a pending community submission."""
        pending = self._fetch(
            "id = ? AND template_kind = 'community' AND template_status = 'pending'",
            (prompt_id,),
        )
        if pending is None:
            raise RepositoryError(f"No pending submission {prompt_id}")
        return self._set_template_state(
            prompt_id,
            is_template=approve,
            kind="community",
            status="approved" if approve else "rejected",
        )

    def publish_template(self, prompt_id: str) -> StoredPrompt:
        """Publish any prompt directly as an official template."""
        return self._set_template_state(
            prompt_id, is_template=True, kind="official", status="approved"
        )

    def unpublish_template(self, prompt_id: str) -> StoredPrompt:
        prompt = self.get_prompt(prompt_id)
        if prompt is None:
            raise RepositoryError(f"Prompt {prompt_id} not found")
        return self._set_template_state(
            prompt_id, is_template=False, kind=prompt.template_kind, status="none"
        )

    def _set_template_state(
        self,
        prompt_id: str,
        *,
        is_template: bool,
        kind: str,
        status: str,
    ) -> StoredPrompt:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """UPDATE prompts
                   SET is_template = ?, template_kind = ?, template_status = ?, updated_at = ?
                   WHERE id = ?""",
                (int(is_template), kind, status, self._now_iso(), prompt_id),
            )
        if cursor.rowcount == 0:
            raise RepositoryError(f"Prompt {prompt_id} not found")
        logger.info("Template state of %s: %s/%s", prompt_id, kind, status)
        stored = self.get_prompt(prompt_id)
        if stored is None:
            raise RepositoryError(f"Prompt {prompt_id} not found")
        return stored

    # ------------------------------------------------------------------
    # Teacher profiles
    # ------------------------------------------------------------------

    def save_profile(self, teacher_id: str, profile: TeacherProfile) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO teacher_profiles (teacher_id, profile_json, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(teacher_id) DO UPDATE SET
                       profile_json = excluded.profile_json,
                       updated_at = excluded.updated_at""",
                (teacher_id, json.dumps(profile.to_dict(), ensure_ascii=False), self._now_iso()),
            )
        logger.info("Saved teacher profile for %s", teacher_id)

    def get_profile(self, teacher_id: str) -> TeacherProfile | None:
        row = self._db.connection.execute(
            "SELECT profile_json FROM teacher_profiles WHERE teacher_id = ?",
            (teacher_id,),
        ).fetchone()
        if row is None:
            return None
        try:
            return TeacherProfile.from_dict(json.loads(row["profile_json"]))
        except (json.JSONDecodeError, TypeError, AttributeError) as exc:
            raise RepositoryError(f"Corrupt profile for teacher {teacher_id}") from exc
