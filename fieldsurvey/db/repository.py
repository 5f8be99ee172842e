# repository.py
from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from fieldsurvey.app.errors import ResponseNotFound, SurveyNotFound
from fieldsurvey.app.logging import get_logger

from .connection import connect, db_session, read_schema_sql
from .models import DEFAULT_VERSION, Question, ResponseRecord, Survey

logger = get_logger(__name__)

UNKNOWN_INTERVIEWER = "Desconhecido"


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _decode_answers(raw: Optional[str], response_id: str) -> Dict[str, Any]:
    # Field data can be inconsistent; an unreadable mapping reads as "no answers".
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        logger.warning("Unreadable respostas JSON; treating as empty", extra={"response_id": response_id})
        return {}
    if not isinstance(value, dict):
        logger.warning("respostas is not a JSON object; treating as empty", extra={"response_id": response_id})
        return {}
    return value


def _encode_answers(answers: Mapping[str, Any]) -> str:
    return json.dumps(dict(answers), ensure_ascii=False)


class SQLiteRepository:
    """Persistence collaborator of the analysis engine.

    Reads surveys, versioned questions and responses, and rewrites the
    ``respostas`` mapping of single responses. Every call opens its own
    connection, so one instance can be shared by a page render and a merge.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def init_schema_from_sql(self, schema_sql: str) -> None:
        # Execute schema SQL in a single transaction.
        conn = connect(self.db_path)
        try:
            conn.executescript(schema_sql)
            conn.commit()
        finally:
            conn.close()

    def init_schema(self) -> None:
        self.init_schema_from_sql(read_schema_sql())

    # -------------------------
    # Surveys + questions
    # -------------------------
    def upsert_survey(self, s: Survey) -> None:
        conn = connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO pesquisas(id, titulo, descricao, versao, ativa, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  titulo=excluded.titulo,
                  descricao=excluded.descricao,
                  versao=excluded.versao,
                  ativa=excluded.ativa
                """,
                (s.survey_id, s.title, s.description, s.version, 1 if s.active else 0, s.created_at or _now_iso()),
            )
            conn.commit()
        finally:
            conn.close()

    def fetch_surveys(self) -> List[Survey]:
        # All surveys, inactive included, newest first.
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT id, titulo, descricao, versao, ativa, created_at
                FROM pesquisas
                ORDER BY created_at DESC
                """
            ).fetchall()
            return [self._row_to_survey(r) for r in rows]
        finally:
            conn.close()

    def fetch_survey(self, survey_id: str) -> Survey:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, titulo, descricao, versao, ativa, created_at FROM pesquisas WHERE id = ?",
                (survey_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise SurveyNotFound(f"Survey not found: {survey_id}")
        return self._row_to_survey(row)

    def upsert_question(self, q: Question) -> None:
        conn = connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO perguntas(
                  id, pesquisa_id, texto, tipo, tipo_pergunta, opcoes,
                  ordem, versao, permite_outro, obrigatoria
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  pesquisa_id=excluded.pesquisa_id,
                  texto=excluded.texto,
                  tipo=excluded.tipo,
                  tipo_pergunta=excluded.tipo_pergunta,
                  opcoes=excluded.opcoes,
                  ordem=excluded.ordem,
                  versao=excluded.versao,
                  permite_outro=excluded.permite_outro,
                  obrigatoria=excluded.obrigatoria
                """,
                (
                    q.question_id,
                    q.survey_id,
                    q.text,
                    q.type,
                    q.prompt_type,
                    json.dumps(list(q.options), ensure_ascii=False) if q.options is not None else None,
                    q.order_index,
                    q.version,
                    1 if q.allows_other else 0,
                    1 if q.required else 0,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def fetch_questions(self, survey_id: str) -> List[Question]:
        # Every version of the question set, ordered by the explicit order field.
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT id, pesquisa_id, texto, tipo, tipo_pergunta, opcoes,
                       ordem, versao, permite_outro, obrigatoria
                FROM perguntas
                WHERE pesquisa_id = ?
                ORDER BY ordem ASC, versao ASC
                """,
                (survey_id,),
            ).fetchall()

            out: List[Question] = []
            for r in rows:
                options = json.loads(r["opcoes"]) if r["opcoes"] else None
                out.append(
                    Question(
                        question_id=r["id"],
                        survey_id=r["pesquisa_id"],
                        text=r["texto"],
                        type=r["tipo"],
                        prompt_type=r["tipo_pergunta"],
                        order_index=r["ordem"],
                        options=tuple(options) if isinstance(options, list) else None,
                        version=r["versao"] or DEFAULT_VERSION,
                        allows_other=bool(r["permite_outro"]),
                        required=bool(r["obrigatoria"]),
                    )
                )
            return out
        finally:
            conn.close()

    # -------------------------
    # Interviewers
    # -------------------------
    def upsert_interviewer(self, interviewer_id: str, name: str, team: Optional[str] = None) -> None:
        conn = connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO profiles(id, nome, equipe) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET nome=excluded.nome, equipe=excluded.equipe
                """,
                (interviewer_id, name, team),
            )
            conn.commit()
        finally:
            conn.close()

    # -------------------------
    # Responses
    # -------------------------
    def insert_response(
        self,
        survey_id: str,
        answers: Mapping[str, Any],
        survey_version: Optional[int] = None,
        interviewer_id: Optional[str] = None,
        created_at: Optional[str] = None,
        response_id: Optional[str] = None,
    ) -> str:
        response_id = response_id or str(uuid4())
        conn = connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO respostas(id, pesquisa_id, pesquisa_versao, entrevistador_id, respostas, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (response_id, survey_id, survey_version, interviewer_id, _encode_answers(answers), created_at or _now_iso()),
            )
            conn.commit()
            return response_id
        finally:
            conn.close()

    def fetch_responses(self, survey_id: str) -> List[ResponseRecord]:
        # Newest first. Responses stored without a version belong to version 1.
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT r.id, r.pesquisa_id, r.pesquisa_versao, r.entrevistador_id,
                       r.respostas, r.created_at, p.nome
                FROM respostas r
                LEFT JOIN profiles p ON p.id = r.entrevistador_id
                WHERE r.pesquisa_id = ?
                ORDER BY r.created_at DESC, r.rowid DESC
                """,
                (survey_id,),
            ).fetchall()

            return [
                ResponseRecord(
                    response_id=r["id"],
                    survey_id=r["pesquisa_id"],
                    answers=_decode_answers(r["respostas"], r["id"]),
                    survey_version=r["pesquisa_versao"] or DEFAULT_VERSION,
                    created_at=r["created_at"],
                    interviewer_id=r["entrevistador_id"],
                    interviewer_name=r["nome"] or UNKNOWN_INTERVIEWER,
                )
                for r in rows
            ]
        finally:
            conn.close()

    def update_response_answers(self, response_id: str, answers: Mapping[str, Any]) -> None:
        conn = connect(self.db_path)
        try:
            cur = conn.execute(
                "UPDATE respostas SET respostas = ? WHERE id = ?",
                (_encode_answers(answers), response_id),
            )
            if cur.rowcount == 0:
                raise ResponseNotFound(f"Response not found: {response_id}")
            conn.commit()
        finally:
            conn.close()

    def update_responses_answers_batch(self, updates: Sequence[Tuple[str, Mapping[str, Any]]]) -> int:
        # All-or-nothing: one missing id rolls back the whole batch.
        with db_session(self.db_path, immediate=True) as conn:
            for response_id, answers in updates:
                cur = conn.execute(
                    "UPDATE respostas SET respostas = ? WHERE id = ?",
                    (_encode_answers(answers), response_id),
                )
                if cur.rowcount == 0:
                    raise ResponseNotFound(f"Response not found: {response_id}")
        return len(updates)

    @staticmethod
    def _row_to_survey(r: sqlite3.Row) -> Survey:
        return Survey(
            survey_id=r["id"],
            title=r["titulo"],
            description=r["descricao"],
            version=r["versao"] or DEFAULT_VERSION,
            active=bool(r["ativa"]),
            created_at=r["created_at"],
        )
