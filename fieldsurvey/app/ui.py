from pathlib import Path
from typing import Optional

import pandas as pd
import streamlit as st

from fieldsurvey.analysis.aggregate import TOTAL_LABEL
from fieldsurvey.analysis.merge import AnswerMerger
from fieldsurvey.analysis.results import ResultsSnapshot
from fieldsurvey.app.config import Settings
from fieldsurvey.app.errors import ExportError, MergePersistenceError, MergeUsageError
from fieldsurvey.app.logging import setup_logging
from fieldsurvey.db.repository import SQLiteRepository
from fieldsurvey.reports.export import export_filename, export_workbook, responses_to_csv
from fieldsurvey.tools.stats import association_summary


MERGE_FLASH_KEY = "merge_flash"

st.set_page_config(
    page_title="Resultados",
    page_icon="📊",
    layout="wide",
    initial_sidebar_state="expanded",
)


@st.cache_resource
def get_settings() -> Settings:
    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_json)
    return settings


@st.cache_resource
def get_repository(db_path: str) -> SQLiteRepository:
    repo = SQLiteRepository(db_path)
    repo.init_schema()
    return repo


settings = get_settings()
repo = get_repository(settings.db_path)


def load_snapshot(survey_id: str) -> ResultsSnapshot:
    # Fresh read on every rerun so a finished merge shows up immediately.
    return ResultsSnapshot.load(repo, survey_id)


# --- Sidebar: survey + version ---
with st.sidebar:
    st.header("📂 Pesquisa")
    surveys = repo.fetch_surveys()
    if not surveys:
        st.info("Nenhuma pesquisa cadastrada.")
        st.stop()

    survey_labels = {s.survey_id: s.title for s in surveys}
    survey_id = st.selectbox(
        "Selecione uma pesquisa",
        options=list(survey_labels),
        format_func=lambda sid: survey_labels[sid],
    )

    snapshot = load_snapshot(survey_id)
    counts = snapshot.version_counts
    version: Optional[int] = None
    if len(snapshot.versions) > 1:
        version_options = [None] + snapshot.versions
        version = st.selectbox(
            "Versão",
            options=version_options,
            format_func=lambda v: (
                f"Todas versões ({len(snapshot.responses)})" if v is None else f"Versão {v} ({counts.get(v, 0)} coletas)"
            ),
        )

st.title("Resultados")
st.markdown("Análise e cruzamento dos dados coletados")

if not snapshot.responses:
    st.info("Nenhuma resposta coletada para esta pesquisa.")
    st.stop()

view = snapshot.for_version(version)

c1, c2, c3, c4 = st.columns([1, 1, 1, 1])
c1.metric("Respostas", view.total_responses)
c2.metric("Perguntas", len(view.questions))
c3.download_button(
    "⬇️ CSV",
    data=responses_to_csv(view.questions, view.responses).encode("utf-8"),
    file_name=export_filename("resultados", snapshot.survey.title),
    mime="text/csv",
)
if c4.button("📑 Excel"):
    try:
        xlsx = export_workbook(
            str(Path(settings.exports_dir) / export_filename("relatorio", snapshot.survey.title, ext="xlsx")),
            view.analysis(),
        )
    except ExportError as e:
        st.error(str(e))
    else:
        c4.download_button(
            "⬇️ Baixar Excel",
            data=xlsx.read_bytes(),
            file_name=xlsx.name,
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )

# Set by a merge right before st.rerun(); shown once on the next render.
flash = st.session_state.pop(MERGE_FLASH_KEY, None)
if flash:
    st.success(flash)

tab_analysis, tab_cross = st.tabs(["Análise por Pergunta", "Cruzamento"])

with tab_analysis:
    for a in view.analysis():
        st.subheader(f"{a.index}. {a.question.text}")
        st.caption(a.question.effective_prompt_type)
        if a.table.is_empty:
            st.write("_Nenhuma resposta registrada._")
            continue

        if len(a.table.entries) <= settings.chart_max_categories:
            st.bar_chart(a.table.to_dataframe(with_total=False).set_index("Resposta")["Contagem"])
        st.dataframe(a.table.to_dataframe(), use_container_width=True)

        if not a.mergeable:
            continue
        with st.expander("🔀 Unificar respostas"):
            labels = [value for value, _ in a.table.entries]
            selected = st.multiselect("Valores a unificar", labels, key=f"merge_src_{a.question.question_id}")
            target = st.text_input(
                "Valor final",
                value=selected[0] if selected else "",
                key=f"merge_dst_{a.question.question_id}_{len(selected)}",
            )
            if st.button("Unificar", key=f"merge_btn_{a.question.question_id}", disabled=len(selected) < 2):
                merger = AnswerMerger(repo, atomic=settings.merge_atomic)
                try:
                    result = merger.merge(a.question.question_id, selected, target, snapshot.responses)
                except MergeUsageError as e:
                    st.error(str(e))
                except MergePersistenceError as e:
                    st.error(
                        f"Erro ao unificar respostas: {e}. {e.updated} resposta(s) já foram atualizadas; "
                        "repetir a unificação é seguro."
                    )
                else:
                    st.session_state[MERGE_FLASH_KEY] = f"{result.updated} resposta(s) atualizadas!"
                    st.rerun()

with tab_cross:
    question_labels = {q.question_id: q.text if len(q.text) <= 60 else q.text[:60] + "…" for q in view.questions}
    col_a, col_b = st.columns(2)
    row_q = col_a.selectbox("Linhas", options=list(question_labels), format_func=lambda qid: question_labels[qid])
    col_q = col_b.selectbox("Colunas", options=list(question_labels), format_func=lambda qid: question_labels[qid])

    matrix = view.cross_tab(row_q, col_q) if row_q and col_q else None
    if matrix is None:
        st.info("Nenhum dado para este cruzamento.")
    else:
        if matrix.truncated_responses:
            st.warning(
                f"{matrix.truncated_responses} resposta(s) com múltiplos valores: apenas o primeiro foi considerado."
            )
        st.dataframe(matrix.to_dataframe(with_totals=False), use_container_width=True)
        # Totals sit beside the table: an answer may itself read TOTAL_LABEL.
        t1, t2 = st.columns(2)
        t1.caption("Total por linha")
        t1.dataframe(pd.Series(matrix.row_totals, name=TOTAL_LABEL), use_container_width=True)
        t2.caption("Total por coluna")
        t2.dataframe(pd.Series(matrix.col_totals, name=TOTAL_LABEL), use_container_width=True)
        summary = association_summary(matrix)
        m1, m2, m3 = st.columns(3)
        m1.metric(TOTAL_LABEL, matrix.grand_total)
        m2.metric("Cramér's V", f"{summary['cramers_v']:.3f}")
        m3.metric("p-valor (qui-quadrado)", f"{summary['p_value']:.4f}")
