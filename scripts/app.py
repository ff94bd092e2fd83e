#!/usr/bin/env python3
"""
Streamlit browser for the API knowledge store.

To run:
1. Install the package (pip install -e .) and set DATABASE_URL, or keep it in a keys file.
2. Run: streamlit run scripts/app.py
"""
import tempfile
import os
from pathlib import Path

import streamlit as st

from api_knowledge.codegen import LANGUAGES, generate_client
from api_knowledge.config import Settings
from api_knowledge.db import make_engine, make_session_factory, session_scope
from api_knowledge.store import (
    api_summary,
    critical_quirks,
    expensive_endpoints,
    find_endpoint,
    get_api,
    list_quirks,
    price_lookup,
)
from api_knowledge.workflows import compare_plans, load_plans


@st.cache_resource
def _session_factory(database_url: str):
    """One engine per database URL for the lifetime of the app."""
    return make_session_factory(make_engine(database_url))


def _database_url(keys_file: str) -> str:
    settings = Settings.from_env_or_file(Path(keys_file) if keys_file else None)
    return settings.database_url or ""


# --- UI Functions for Each Tab ---

def ui_summary(factory):
    st.header("APIs")
    with session_scope(factory) as session:
        rows = api_summary(session)
    if not rows:
        st.info("The store is empty. Ingest an API with `python scripts/ingest.py run --params-file ...`.")
        return
    st.dataframe(
        [{k: v for k, v in r.items() if k != "id"} for r in rows],
        use_container_width=True,
    )

    names = [r["name"] for r in rows]
    selected = st.selectbox("Show quirks for", names)
    severity = st.selectbox("Severity", ["any", "critical", "high", "medium", "low"])
    if selected:
        with session_scope(factory) as session:
            api = get_api(session, selected)
            quirks = list_quirks(session, api.id, severity=None if severity == "any" else severity) if api else []
            for q in quirks:
                title = f"[{q.severity}] {q.quirk_type}" + (f" `{q.field_name}`" if q.field_name else "")
                with st.expander(title):
                    st.write(q.description)
                    if q.conversion_function:
                        st.code(q.conversion_function, language=q.conversion_language or "python")
                    if q.example_input:
                        st.text(f"{q.example_input} -> {q.example_output}")


def ui_critical(factory):
    st.header("Critical Quirks")
    st.write("High and critical severity quirks, most severe first.")
    with session_scope(factory) as session:
        rows = critical_quirks(session)
    if rows:
        st.dataframe(rows, use_container_width=True)
    else:
        st.success("No high or critical quirks recorded.")


def ui_expensive(factory):
    st.header("Expensive Endpoints")
    limit = st.number_input("Rows", min_value=1, max_value=1000, value=100)
    with session_scope(factory) as session:
        rows = expensive_endpoints(session, limit=int(limit))
    if rows:
        st.dataframe(rows, use_container_width=True)
    else:
        st.info("No endpoint has a cost_per_call yet.")


def ui_workflows(factory):
    st.header("Workflow Cost Comparison")
    st.write("Upload a YAML/JSON file with one or more workflow plans and rank them by projected monthly cost.")
    plans_file = st.file_uploader("Plans file", type=["yaml", "yml", "json"])
    executions = st.number_input("Executions per month", min_value=1, value=1000, step=100)

    if st.button("Compare", type="primary"):
        if plans_file is None:
            st.error("Please upload a plans file.")
            return
        # load_plans needs a path; the suffix selects the parser
        suffix = Path(plans_file.name).suffix or ".yaml"
        with tempfile.NamedTemporaryFile(delete=False, mode="w", suffix=suffix) as f:
            f.write(plans_file.getvalue().decode("utf-8"))
            temp_path = Path(f.name)
        try:
            plans = load_plans(temp_path)
            with session_scope(factory) as session:
                rows = compare_plans(plans, price_lookup(session), int(executions))
            st.dataframe(
                [
                    {
                        "plan": r.name,
                        "per execution": float(r.cost_per_execution),
                        "per month": float(r.monthly_cost),
                        "steps": r.step_count,
                        "savings vs most expensive": float(r.savings_vs_most_expensive),
                        "unpriced steps": ", ".join(r.unpriced),
                    }
                    for r in rows
                ],
                use_container_width=True,
            )
        except Exception as e:
            st.exception(e)
        finally:
            os.unlink(temp_path)


def ui_codegen(factory):
    st.header("Code Generation")
    with session_scope(factory) as session:
        names = [r["name"] for r in api_summary(session)]
    if not names:
        st.info("No APIs stored yet.")
        return
    name = st.selectbox("API", names, key="cg_api")
    with session_scope(factory) as session:
        api = get_api(session, name)
        choices = [f"{e.method} {e.path}" for e in api.endpoints] if api else []
    if not choices:
        st.info("This API has no endpoints.")
        return
    choice = st.selectbox("Endpoint", choices)
    language = st.radio("Language", LANGUAGES, horizontal=True)
    if st.button("Generate", type="primary"):
        method, path = choice.split(" ", 1)
        with session_scope(factory) as session:
            api = get_api(session, name)
            endpoint = find_endpoint(session, api.id, method, path)
            code = generate_client(api, endpoint, language)
        st.code(code, language="bash" if language == "curl" else language)


# --- Main App ---

def main():
    st.set_page_config(page_title="API Knowledge", layout="wide")
    st.title("API Knowledge Browser")

    keys_file = st.sidebar.text_input("Keys file (optional)", "", help="KEY=VALUE/JSON/YAML file with DATABASE_URL")
    database_url = st.sidebar.text_input("Database URL", _database_url(keys_file), type="password")
    if not database_url:
        st.warning("Set DATABASE_URL (environment, keys file or the sidebar) to browse the store.")
        st.stop()

    try:
        factory = _session_factory(database_url)
    except Exception as e:
        st.error("Could not connect to the database.")
        st.exception(e)
        st.stop()

    tab1, tab2, tab3, tab4, tab5 = st.tabs([
        "APIs",
        "Critical Quirks",
        "Expensive Endpoints",
        "Workflow Costs",
        "Code Generation",
    ])

    with tab1:
        ui_summary(factory)

    with tab2:
        ui_critical(factory)

    with tab3:
        ui_expensive(factory)

    with tab4:
        ui_workflows(factory)

    with tab5:
        ui_codegen(factory)


if __name__ == "__main__":
    main()
