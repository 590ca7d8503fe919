#!/usr/bin/env python3
from __future__ import annotations

import html
from datetime import date

import pandas as pd
import streamlit as st

from timesheet_doctor.alerts import alert_counts, evaluate_alerts
from timesheet_doctor.dashboard import (
    RecordFilter,
    apply_filters,
    available_months,
    compute_stats,
    filter_options,
    records_frame,
)
from timesheet_doctor.export import records_to_csv, workbook_bytes
from timesheet_doctor.ingest import ingest_team_config, parse_records
from timesheet_doctor.loader import (
    MAX_REMOTE_FILE_MB,
    LatestRequestGuard,
    SourceError,
    decode_bytes,
    fetch_published_sheet,
)
from timesheet_doctor.logging_utils import configure_logging
from timesheet_doctor.models import SEVERITY_CRITICAL, SEVERITY_INFO, SEVERITY_WARNING
from timesheet_doctor.narrative import NarrativeError, request_analysis
from timesheet_doctor.settings import (
    DEFAULT_CONFIG_PATH,
    Settings,
    SettingsError,
    load_settings,
    resolve_config_path,
    save_settings,
)
from timesheet_doctor.team_config import TeamConfig

TABLE_PREVIEW_ROWS = 50
SEVERITY_LABELS = {SEVERITY_CRITICAL: "Behind", SEVERITY_WARNING: "Attention", SEVERITY_INFO: "Info"}
TABLE_COLUMNS = ["date", "consultant", "record_type", "client", "ticket_id", "project", "hours"]


def ensure_state() -> None:
    if "settings" not in st.session_state:
        try:
            st.session_state["settings"] = load_settings()
        except SettingsError as exc:
            st.session_state["settings_error"] = str(exc)
            st.session_state["settings"] = Settings()
    settings = st.session_state["settings"]
    st.session_state.setdefault("records", [])
    st.session_state.setdefault("ingest_summary", None)
    st.session_state.setdefault("source_label", "")
    st.session_state.setdefault("load_error", "")
    st.session_state.setdefault("fetch_guard", LatestRequestGuard())
    st.session_state.setdefault("forced_ids", None)
    st.session_state.setdefault("narrative", None)
    st.session_state.setdefault("data_url_input", settings.data_url or "")
    st.session_state.setdefault("team_url_input", settings.team_config_url or "")
    if "team" not in st.session_state:
        team = TeamConfig()
        for name, category in settings.team_overrides.items():
            team.set_override(name, category)
        st.session_state["team"] = team


def set_visuals() -> None:
    st.set_page_config(page_title="timesheet-doctor", page_icon="⏱️", layout="wide", initial_sidebar_state="expanded")
    st.markdown(
        """
        <style>
        .block-container {
            padding-top: 2rem;
            padding-bottom: 2rem;
        }
        [data-testid="stDecoration"] {
            display: none !important;
        }
        .alert-card {
            border-radius: 14px;
            padding: 0.75rem 1rem;
            margin-bottom: 0.5rem;
            border: 1px solid var(--alert-border);
            background: var(--alert-bg);
        }
        .alert-critical { --alert-border: #f8717180; --alert-bg: #f8717114; }
        .alert-warning { --alert-border: #fbbf2480; --alert-bg: #fbbf2414; }
        .alert-info { --alert-border: #60a5fa80; --alert-bg: #60a5fa14; }
        </style>
        """,
        unsafe_allow_html=True,
    )


# ══════════════════════════════════════════════════════════════════════════
# LOADING
# ══════════════════════════════════════════════════════════════════════════

def accept_text(text: str, label: str) -> None:
    result = parse_records(text)
    if not result.records:
        st.session_state["load_error"] = "No usable rows were found. Check that the sheet has a header row and data."
        return
    st.session_state["records"] = result.records
    st.session_state["ingest_summary"] = result.summary()
    st.session_state["source_label"] = label
    st.session_state["load_error"] = ""
    st.session_state["forced_ids"] = None
    st.session_state["narrative"] = None


def load_from_upload(uploaded) -> None:
    accept_text(decode_bytes(uploaded.getvalue()), uploaded.name)


def load_from_url(url: str) -> None:
    settings = st.session_state["settings"]
    guard: LatestRequestGuard = st.session_state["fetch_guard"]
    token = guard.begin()
    try:
        text = fetch_published_sheet(url, timeout=settings.request_timeout)
    except SourceError as exc:
        if guard.is_current(token):
            st.session_state["load_error"] = str(exc)
        return
    text = guard.accept(token, text)
    if text is not None:
        accept_text(text, url)


def load_team_sheet(text: str) -> None:
    mapping = ingest_team_config(text)
    if not mapping:
        st.session_state["load_error"] = "The team sheet has no name/category rows."
        return
    st.session_state["team"].load_base(mapping)


def remember_urls() -> None:
    settings = st.session_state["settings"]
    settings.data_url = st.session_state.get("data_url_input") or None
    settings.team_config_url = st.session_state.get("team_url_input") or None
    settings.team_overrides = dict(st.session_state["team"].overrides)
    path = resolve_config_path() or DEFAULT_CONFIG_PATH
    save_settings(settings, path)
    st.toast(f"Settings saved to {path}")


# ══════════════════════════════════════════════════════════════════════════
# SIDEBAR
# ══════════════════════════════════════════════════════════════════════════

def render_sources() -> None:
    st.sidebar.header("Data")
    uploaded = st.sidebar.file_uploader("Timesheet export", type=["csv", "txt"], key="data_upload")
    if uploaded is not None and st.sidebar.button("Load file", key="load_file_btn"):
        load_from_upload(uploaded)

    st.sidebar.text_input(
        "Published sheet URL",
        key="data_url_input",
        placeholder="https://docs.google.com/spreadsheets/.../pub?output=csv",
    )
    if st.sidebar.button("Load URL", key="load_url_btn", disabled=not st.session_state.get("data_url_input")):
        with st.spinner("Fetching sheet..."):
            load_from_url(st.session_state["data_url_input"])
    st.sidebar.caption(f"Remote sheets above {MAX_REMOTE_FILE_MB} MB are rejected.")


def render_team_editor() -> None:
    team: TeamConfig = st.session_state["team"]
    st.sidebar.header("Team")
    st.sidebar.text_input("Team sheet URL", key="team_url_input")
    team_upload = st.sidebar.file_uploader("Team sheet file", type=["csv", "txt"], key="team_upload")
    if st.sidebar.button("Load team sheet", key="load_team_btn"):
        try:
            if team_upload is not None:
                load_team_sheet(decode_bytes(team_upload.getvalue()))
            elif st.session_state.get("team_url_input"):
                load_team_sheet(fetch_published_sheet(st.session_state["team_url_input"]))
        except SourceError as exc:
            st.session_state["load_error"] = str(exc)

    consultants = sorted({record.consultant for record in st.session_state["records"]} | set(team.merged()))
    with st.sidebar.expander("Edit categories", expanded=False):
        if not consultants:
            st.caption("Load data or a team sheet first.")
        else:
            name = st.selectbox("Consultant", consultants, key="override_name")
            current = team.category_for(name) or ""
            known = team.categories()
            category = st.text_input(
                "Category",
                value=current,
                key=f"override_category_{name}",
                help=f"Known categories: {', '.join(known) or '[none]'}. Leave empty to clear the manual value.",
            )
            if st.button("Apply", key="override_apply"):
                team.set_override(name, category.strip())
                st.session_state["forced_ids"] = None
            provenance = team.provenance(name)
            if provenance:
                st.caption(f"Current value comes from the {provenance} layer.")
        if team.merged():
            st.dataframe(
                pd.DataFrame(
                    [
                        {"Consultant": name, "Category": category, "Source": team.provenance(name)}
                        for name, category in sorted(team.merged().items())
                    ]
                ),
                hide_index=True,
            )

    if st.sidebar.button("Remember URLs and categories", key="remember_btn"):
        remember_urls()


def render_filters(records) -> RecordFilter:
    options = filter_options(records)
    months = available_months(records)
    month_labels = {item["value"]: item["label"] for item in months}
    st.sidebar.header("Filters")
    selected_months = st.sidebar.multiselect(
        "Months",
        options=[item["value"] for item in months],
        format_func=lambda value: month_labels.get(value, value),
        key="filter_months",
    )
    return RecordFilter(
        months=selected_months,
        clients=st.sidebar.multiselect("Clients", options["clients"], key="filter_clients"),
        consultants=st.sidebar.multiselect("Consultants", options["consultants"], key="filter_consultants"),
        record_types=st.sidebar.multiselect("Record types", options["record_types"], key="filter_record_types"),
        consultant_types=st.sidebar.multiselect(
            "Consultant categories",
            options["consultant_types"],
            key="filter_consultant_types",
            help="With nothing selected, consultants in the 'Baja' (inactive) category are hidden.",
        ),
        search=st.sidebar.text_input("Search task, description or ticket", key="filter_search"),
        forced_ids=st.session_state.get("forced_ids"),
    )


# ══════════════════════════════════════════════════════════════════════════
# MAIN PANELS
# ══════════════════════════════════════════════════════════════════════════

def render_kpis(stats: dict) -> None:
    kpi = stats["kpi"]
    cols = st.columns(4)
    cols[0].metric("Total hours", f"{kpi['total_hours']:,.1f}")
    cols[1].metric("Top consultant", kpi["top_consultant"], f"{kpi['top_consultant_hours']:.1f} hs", delta_color="off")
    cols[2].metric("Top client", kpi["top_client"], f"{kpi['top_client_hours']:.1f} hs", delta_color="off")
    cols[3].metric("Lowest load", kpi["bottom_consultant"], f"{kpi['bottom_consultant_hours']:.1f} hs", delta_color="off")


def alert_card_html(alert) -> str:
    return (
        f'<div class="alert-card alert-{alert.severity}">'
        f"<strong>{SEVERITY_LABELS[alert.severity]}</strong> · {html.escape(alert.metric_label)}<br>"
        f"<strong>{html.escape(alert.consultant)}</strong>: {html.escape(alert.title)}<br>"
        f"<small>{html.escape(alert.detail)}</small></div>"
    )


def render_alerts(visible, selected_months: list[str]) -> list:
    alerts = evaluate_alerts(visible, selected_months, date.today())
    counts = alert_counts(alerts)
    st.subheader("Alerts")
    st.caption(
        f"{counts[SEVERITY_CRITICAL]} critical · {counts[SEVERITY_WARNING]} warning · {counts[SEVERITY_INFO]} info"
    )
    if len(selected_months) != 1 and alerts:
        st.info("Select a single month to enable the month-to-date and month-close load checks.")
    if not alerts:
        st.success("No anomalies detected for the current view.")
        return alerts

    for idx, alert in enumerate(alerts):
        with st.container():
            st.markdown(alert_card_html(alert), unsafe_allow_html=True)
            if st.button(f"Show {len(alert.related_record_ids)} records", key=f"alert_{idx}"):
                st.session_state["forced_ids"] = list(alert.related_record_ids)
                st.rerun()
    return alerts


def render_charts(stats: dict) -> None:
    charts = stats["charts"]
    left, right = st.columns(2)
    with left:
        st.subheader("Hours by client")
        if charts["by_client"]:
            st.bar_chart(pd.DataFrame(charts["by_client"]).set_index("name")["value"])
    with right:
        st.subheader("Monthly trend")
        if charts["monthly_trend"]:
            trend = pd.DataFrame(charts["monthly_trend"]).set_index("date").fillna(0.0)
            st.bar_chart(trend.drop(columns=["hours"]), stack=True)
    st.subheader("Consultant load by client")
    if charts["consultant_by_client"]:
        pivot = pd.DataFrame(charts["consultant_by_client"]).set_index("name").drop(columns=["total"])
        st.bar_chart(pivot, horizontal=True, stack=True)


def render_table(visible, alerts) -> None:
    st.subheader(f"Records ({len(visible)})")
    if st.session_state.get("forced_ids") is not None:
        if st.button("Clear alert filter", key="clear_forced"):
            st.session_state["forced_ids"] = None
            st.rerun()
    if not visible:
        st.info("No records match the current filters.")
        return
    frame = records_frame(visible)[TABLE_COLUMNS]
    st.dataframe(frame.head(TABLE_PREVIEW_ROWS), hide_index=True, width="stretch")
    if len(visible) > TABLE_PREVIEW_ROWS:
        st.caption(f"Showing the first {TABLE_PREVIEW_ROWS} of {len(visible)} records.")

    stamp = date.today().isoformat()
    left, right = st.columns(2)
    left.download_button(
        "Export CSV",
        data=records_to_csv(visible).encode("utf-8"),
        file_name=f"timesheet_report_{stamp}.csv",
        mime="text/csv",
    )
    right.download_button(
        "Export XLSX",
        data=workbook_bytes(visible, alerts),
        file_name=f"timesheet_report_{stamp}.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )


def render_narrative(stats: dict) -> None:
    settings = st.session_state["settings"]
    st.subheader("AI summary")
    if st.button("Generate summary", key="narrative_btn"):
        with st.spinner("Asking the model..."):
            try:
                st.session_state["narrative"] = request_analysis(
                    stats,
                    api_key=settings.gemini_api_key,
                    model=settings.gemini_model,
                    timeout=settings.request_timeout,
                )
            except NarrativeError as exc:
                st.error(str(exc))
    analysis = st.session_state.get("narrative")
    if analysis:
        st.write(analysis["summary"])
        left, right = st.columns(2)
        with left:
            st.markdown("**Risks**")
            for item in analysis["risks"]:
                st.markdown(f"- {item}")
        with right:
            st.markdown("**Recommendations**")
            for item in analysis["recommendations"]:
                st.markdown(f"- {item}")


def main() -> None:
    set_visuals()
    ensure_state()
    configure_logging(st.session_state["settings"].log_level)

    st.title("timesheet-doctor")
    st.caption("Load a timesheet export or a published sheet, then review load, clients and anomalies.")
    if st.session_state.get("settings_error"):
        st.warning(f"Settings file ignored: {st.session_state['settings_error']}")

    render_sources()
    render_team_editor()

    if st.session_state.get("load_error"):
        st.error(st.session_state["load_error"])

    settings = st.session_state["settings"]
    excluded = settings.excluded_categories
    records = st.session_state["team"].apply(st.session_state["records"], excluded)
    if not records:
        st.info("Upload a .csv/.txt export or paste a published sheet URL to start.")
        return

    record_filter = render_filters(records)
    visible = apply_filters(records, record_filter)
    stats = compute_stats(visible)

    st.caption(f"Source: {st.session_state['source_label']}")
    render_kpis(stats)
    alerts = render_alerts(visible, record_filter.months)
    render_charts(stats)
    render_table(visible, alerts)
    render_narrative(stats)


if __name__ == "__main__":
    main()
