import logging

import streamlit as st
from relation_parser import run, parse_relations, parse_query
from relation_types import RelAlgError

logging.basicConfig(level=logging.INFO)

st.set_page_config(page_title="Mini-Relation: Relational Algebra Workbench", page_icon="🧮", layout="wide")

DEFAULT_REL = """movie (title: String, year: Integer, length: Integer, studioNo: Integer) key (title) = {
  "Star_Wars", 1977, 124, 12345
  "Jaws", 1975, 124, 99999
  "Rocky", 1985, 200, 12345
}

studio (name: Integer, studioName: String, president: String) key (name) = {
  12345, "Fox", "Rupert"
  99999, "Universal", "Donna"
}"""

DEFAULT_QUERY = 'π title, studioName (σ 1976 < year (movie) ⋈_{studioNo == name} studio)'

if "relations" not in st.session_state:
    st.session_state.relations = DEFAULT_REL
if "query" not in st.session_state:
    st.session_state.query = DEFAULT_QUERY

st.title("🧮 Mini-Relation — Relational Algebra Workbench")
st.write(
    "Relations are typed and keyed; inserts are checked against each attribute's domain. "
    "Operators: σ (select), π (project), ⋈ (join), ⋃ (union), − (minus). "
    "Conditions are flat: comparisons (==, !=, <, <=, >, >=) joined by & and |, no parentheses."
)

# Inputs
col1, col2 = st.columns([1, 1], gap="large")

with col1:
    st.subheader("Relations input")
    st.text_area(
        "Define one or more relations",
        height=300,
        help="Format: name (a: Integer, b: String) key (a) = {\n  v1, v2\n  ...\n}",
        key="relations",
    )

with col2:
    st.subheader("Query")
    st.caption("Dockbar: click to insert tokens (appends to the end).")
    row1 = ['σ', 'π', '⋈', '⋃', '−', '_{']
    row2 = ['}', '(', ')', ',', '&', '|']
    row3 = ['==', '!=', '<', '<=', '>', '>=']

    def insert(tok: str):
        st.session_state.query = (st.session_state.get("query") or "") + tok

    for r, row in enumerate((row1, row2, row3)):
        c = st.columns(len(row))
        for i, t in enumerate(row):
            c[i].button(t, key=f"dock_{r}_{i}", width="stretch", on_click=insert, args=(f" {t} ",))

    with st.expander("📚 Examples (click to expand/collapse)"):
        st.code('select 1976 < year (movie)', language="text")
        st.code('π title, year (movie)', language="text")
        st.code('movie ⋈_{studioNo == name} studio', language="text")
        st.code('join(movie, studio, on="studioNo == s.name & length > 100")', language="text")
        st.code('movie ⋃ movie', language="text")
        st.code('movie − (σ year < 1980 (movie))', language="text")

    st.text_area(
        "Enter a relational algebra query",
        height=220,
        help="Use symbols (σ, π, ⋈, ⋃, −) or keywords select/project/join(...)/union/minus.",
        key="query",
    )

# Visualize input relations
st.subheader("👀 Visualize Input Relations")
try:
    env_preview = parse_relations(st.session_state.relations)
    for name, rel in env_preview.items():
        schema = ", ".join(f"{a}: {d}" for a, d in zip(rel.attributes, rel.domains))
        st.markdown(f"**{name}** — ({schema}), key = {list(rel.key)}  \n_tuples: {len(rel)}_")
        st.table([dict(zip(rel.attributes, t)) for t in rel] or [])
except RelAlgError as e:
    env_preview = {}
    st.error(f"{type(e).__name__} while parsing relations: {e}")

# Run
if st.button("▶️ Run", key="run", type="primary"):
    trace_lines = []
    try:
        result = run(st.session_state.relations, st.session_state.query, trace=trace_lines.append)
        st.success("Query executed successfully!")

        tabs = st.tabs(["Result Table", "Result Text", "Trace", "Parse Details"])
        with tabs[0]:
            if len(result):
                st.table([dict(zip(result.attributes, t)) for t in result])
                st.download_button("Download CSV", data=result.to_csv(), file_name="result.csv", mime="text/csv")
            else:
                st.info("Empty result set.")
        with tabs[1]:
            st.code(result.pretty(show_domains=True), language="text")
            st.caption(f"key = {list(result.key) if result.key else 'unspecified'}")
        with tabs[2]:
            st.code("\n".join(line for line in trace_lines if line.startswith("RA>")), language="text")
        with tabs[3]:
            st.markdown("**Original query**")
            st.code(st.session_state.query, language="text")
            st.markdown("**Canonical query**")
            st.code(repr(parse_query(st.session_state.query)), language="text")

    except RelAlgError as e:
        st.error(f"{type(e).__name__}: {e}")
    except Exception as e:
        st.exception(e)
else:
    st.caption("Press **Run** to evaluate the query.")
