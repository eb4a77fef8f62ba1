"""
MOFA Stances - World Map Dashboard
==================================

A Streamlit dashboard showing foreign ministry website status and the
diplomatic stances extracted by the topic analyzer.

Usage:
    streamlit run dashboard.py
    # data locations can be local paths or URLs
    MOFA_CSV=data/national_governments.csv MOFA_ANALYSIS=data/latest-analysis.json streamlit run dashboard.py
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add repo root to path for imports
REPO_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(REPO_ROOT))

import streamlit as st
import plotly.graph_objects as go
import pandas as pd

from mofa_stances.dashboard_data import (
    STANCE_THRESHOLD,
    available_views,
    build_map_frame,
    load_analysis,
    load_country_table,
    positions_by_topic,
    selected_links,
)
from mofa_stances.models import CountryRecord

DEFAULT_CSV = os.environ.get("MOFA_CSV", str(REPO_ROOT / "data" / "national_governments.csv"))
DEFAULT_ANALYSIS = os.environ.get("MOFA_ANALYSIS", str(REPO_ROOT / "data" / "latest-analysis.json"))


# =============================================================================
# EXPLAINER CONTENT
# =============================================================================

EXPLAINER_TEXT = f"""
### Website & robots.txt views
Each ministry homepage is probed over HTTP. Dark gray means the site
answered 200; lighter shades mark redirects, blocks (403), missing pages
and transport errors (DNS, refused connections, timeouts). Click a country
to get a link to its ministry website.

### Topic views
Ministry homepages are scraped and a language model is asked, one topic at
a time, for explicit stances. A country is highlighted only when both the
relevance and the clarity score are at least {STANCE_THRESHOLD:.1f}; only
those countries link through to their ministry website when clicked.

### Quote verification
Every quote is searched for verbatim in the scraped text:
- **exact_match**: found as-is
- **partial_match_\\***: only half of it found
- **no_match**: not found (treat with caution)
"""


# =============================================================================
# DESIGN SYSTEM
# =============================================================================

PLOTLY_THEME = {
    'font': {'family': 'Inter, -apple-system, BlinkMacSystemFont, sans-serif', 'color': '#0F172A'},
    'paper_bgcolor': '#FFFFFF',
    'margin': {'l': 0, 'r': 0, 't': 10, 'b': 0},
}


def inject_custom_css():
    """Inject custom CSS for the dashboard."""
    st.markdown("""
        <style>
        html, body, [class*="css"] {
            font-family: 'Inter', -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
        }

        .main .block-container {
            padding: 2rem 3rem;
            max-width: 1200px;
        }

        [data-testid="stSidebar"] {
            background-color: #FFFFFF;
            border-right: 1px solid #E2E8F0;
        }

        h1 {
            font-size: 28px !important;
            font-weight: 600 !important;
            color: #0F172A !important;
        }

        [data-testid="stMetricLabel"] {
            font-size: 12px !important;
            color: #64748B !important;
            text-transform: uppercase !important;
            letter-spacing: 0.5px !important;
        }
        </style>
    """, unsafe_allow_html=True)


# =============================================================================
# DATA LOADING
# =============================================================================

@st.cache_data(ttl=300)
def load_records(location: str) -> List[CountryRecord]:
    return load_country_table(location)


@st.cache_data(ttl=300)
def load_analysis_cached(location: str) -> Optional[Dict[str, Any]]:
    return load_analysis(location)


# =============================================================================
# CHARTS
# =============================================================================

def plot_world_map(frame: pd.DataFrame) -> go.Figure:
    """Choropleth keyed by country name, one discrete color per row."""
    fig = go.Figure()
    for category, group in frame.groupby("category", sort=False):
        color = group["color"].iloc[0]
        fig.add_trace(go.Choropleth(
            locations=group["country"],
            locationmode="country names",
            z=[1] * len(group),
            colorscale=[[0, color], [1, color]],
            showscale=False,
            name=category,
            text=group["tooltip"],
            customdata=group[["link"]].values,
            hovertemplate="%{text}<extra></extra>",
            marker_line_color="#D6D6DA",
            marker_line_width=0.5,
        ))
    fig.update_layout(
        font=PLOTLY_THEME['font'],
        paper_bgcolor=PLOTLY_THEME['paper_bgcolor'],
        margin=PLOTLY_THEME['margin'],
        height=480,
        geo=dict(
            showframe=False,
            showcoastlines=False,
            showcountries=True,
            countrycolor="#D6D6DA",
            landcolor="#E4E5E9",
            projection_type="natural earth",
        ),
    )
    return fig


def display_stance_table(analysis: Dict[str, Any], topic: str, records: List[CountryRecord]):
    """Positions for one topic with their verification status."""
    by_code = {r.code: r for r in records}
    rows = []
    for code, payload in positions_by_topic(analysis).get(topic, {}).items():
        record = by_code.get(code)
        rows.append({
            "Country": record.country if record else code,
            "Website": record.ministry_url if record else "",
            "Stance": payload.get("summarised_stance_in_english", ""),
            "Quote": payload.get("exact_quote", ""),
            "Relevance": payload.get("relevance_to_topic", 0),
            "Clarity": payload.get("clarity_of_stance", 0),
            "Verification": payload.get("verification", ""),
        })
    if not rows:
        st.info("No positions extracted for this topic")
        return
    df = pd.DataFrame(rows).sort_values(["Relevance", "Clarity"], ascending=False)
    st.dataframe(
        df,
        use_container_width=True,
        hide_index=True,
        column_config={"Website": st.column_config.LinkColumn("Website")},
    )


# =============================================================================
# MAIN
# =============================================================================

def main():
    st.set_page_config(page_title="MOFA Stances", layout="wide")
    inject_custom_css()

    st.title("Foreign Ministry Stances")
    st.caption("What governments say on their foreign ministry homepages")

    with st.sidebar:
        csv_location = st.text_input("Countries CSV", DEFAULT_CSV)
        analysis_location = st.text_input("Analysis JSON", DEFAULT_ANALYSIS)
        if st.button("Reload data"):
            st.cache_data.clear()

    records = load_records(csv_location)
    if not records:
        st.warning(f"No country data found at `{csv_location}`")
        return
    analysis = load_analysis_cached(analysis_location)

    views = available_views(analysis)
    with st.sidebar:
        st.divider()
        selected_idx = st.radio(
            "Map view",
            range(len(views)),
            format_func=lambda i: views[i][1],
        )
    view = views[selected_idx][0]

    frame = build_map_frame(records, view, analysis)

    col1, col2, col3 = st.columns(3)
    col1.metric("Countries", len(frame))
    col2.metric("Websites up", sum(1 for r in records if r.http_status == "200"))
    col3.metric("Clear stances", int((frame["category"] == "Clear stance").sum()))

    event = st.plotly_chart(
        plot_world_map(frame),
        use_container_width=True,
        on_select="rerun",
        selection_mode="points",
        key=f"map_{view}",
    )
    for link in selected_links(event.selection.points if event else []):
        st.link_button(f"Visit {link}", link)

    if view not in ("website", "robots") and analysis:
        st.subheader(f"Positions: {view}")
        display_stance_table(analysis, view, records)
    elif analysis is None:
        st.caption(f"No analysis loaded from `{analysis_location}`; topic views unavailable")

    with st.sidebar:
        st.divider()
        with st.expander("How This Works"):
            st.markdown(EXPLAINER_TEXT)


if __name__ == "__main__":
    main()
