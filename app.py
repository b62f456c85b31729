"""
RunTrack - Streamlit Application

Upload GPX/TCX runs, review statistics and splits, and track personal records.
"""

import logging
import os
import threading
import streamlit as st

from gpx_io import load_track_from_string, Track, TrackParseError
from records import RecordLedger, LedgerUpdate
from storage import JsonFileStorage, InMemoryStorage, StorageConfig
from track_stats import calculate_track_stats, TrackStats
from reporting import (
    create_pace_plot, create_elevation_profile, create_splits_chart,
    splits_to_dataframe, records_to_dataframe, ledger_to_dataframe,
    format_duration, format_pace, format_record_time, format_distance_name
)


logging.basicConfig(
    level=os.environ.get('RUNTRACK_LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)
logger = logging.getLogger('runtrack')


# Page configuration
st.set_page_config(
    page_title="RunTrack",
    page_icon="🏃",
    layout="wide",
    initial_sidebar_state="expanded"
)


def init_session_state():
    """Initialize session state variables."""
    if 'tracks' not in st.session_state:
        st.session_state.tracks = {}
    if 'loaded_files' not in st.session_state:
        st.session_state.loaded_files = {}
    if 'record_updates' not in st.session_state:
        st.session_state.record_updates = {}
    if 'session_storage' not in st.session_state:
        st.session_state.session_storage = InMemoryStorage()


@st.cache_resource
def get_ledger_lock() -> threading.Lock:
    """One lock per server process; ledger updates are read-modify-write."""
    return threading.Lock()


def get_ledger(persist: bool) -> RecordLedger:
    if persist:
        return RecordLedger(JsonFileStorage(StorageConfig.from_env()))
    return RecordLedger(st.session_state.session_storage)


def evaluate_records(ledger: RecordLedger, track: Track, persist: bool) -> LedgerUpdate:
    """Evaluate a track once per ledger; reruns reuse the stored result."""
    cache_key = (track.id, persist)
    if cache_key not in st.session_state.record_updates:
        with get_ledger_lock():
            update = ledger.evaluate_track(track)
        st.session_state.record_updates[cache_key] = update
        if update.improved_count and not update.saved:
            logger.warning("Records for %s were found but not saved", track.name)
    return st.session_state.record_updates[cache_key]


def sidebar_upload():
    """Render the file uploader and load new files into session state."""
    st.sidebar.header("Activities")

    uploaded = st.sidebar.file_uploader(
        "Upload GPX or TCX files",
        type=['gpx', 'tcx'],
        accept_multiple_files=True
    )

    for uploaded_file in uploaded or []:
        file_key = f"{uploaded_file.name}:{uploaded_file.size}"
        if file_key in st.session_state.loaded_files:
            continue
        try:
            content = uploaded_file.read().decode('utf-8')
            track = load_track_from_string(content, uploaded_file.name)
        except (TrackParseError, UnicodeDecodeError) as e:
            st.sidebar.error(f"Error loading {uploaded_file.name}: {e}")
            continue
        st.session_state.tracks[track.id] = track
        st.session_state.loaded_files[file_key] = track.id
        st.sidebar.success(f"Loaded {track.name}: {track.distance_km:.2f} km")


def sidebar_settings() -> dict:
    """Render record storage settings in sidebar."""
    st.sidebar.header("Records")

    persist = st.sidebar.checkbox(
        "Save records to disk",
        value=True,
        help="Off keeps records for this browser session only"
    )
    if persist:
        st.sidebar.caption(f"Store: {StorageConfig.from_env().path}")

    return {'persist': persist}


def render_overview_tab(track: Track, stats: TrackStats):
    """Render summary metrics and charts."""
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Distance", f"{stats.total_distance_km:.2f} km")
    col2.metric("Time", format_duration(stats.total_duration_ms))
    col3.metric("Moving Time", format_duration(stats.moving_duration_ms))
    col4.metric("Avg Pace", f"{format_pace(stats.moving_avg_pace)} /km")

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Elevation Gain", f"{stats.elevation_gain:.0f} m")
    col2.metric("Elevation Loss", f"{stats.elevation_loss:.0f} m")
    col3.metric("Max Speed", f"{stats.max_speed_kmh:.1f} km/h")
    col4.metric("Avg HR", f"{stats.avg_hr:.0f} bpm" if stats.avg_hr is not None else "--")

    if stats.pauses:
        total_pause_s = sum(p.duration_s for p in stats.pauses)
        st.caption(f"{len(stats.pauses)} pauses, {format_duration(total_pause_s * 1000)} stopped")

    st.plotly_chart(create_pace_plot(track), use_container_width=True)
    st.plotly_chart(create_elevation_profile(track, stats.splits), use_container_width=True)


def render_splits_tab(stats: TrackStats):
    """Render split table and chart."""
    if not stats.splits:
        st.info("Track is too short for splits")
        return

    st.plotly_chart(create_splits_chart(stats.splits), use_container_width=True)
    st.dataframe(splits_to_dataframe(stats.splits), use_container_width=True, hide_index=True)


def render_records_tab(ledger: RecordLedger, update: LedgerUpdate):
    """Render this track's records and the all-time table."""
    st.subheader("This Run")

    if not update.results:
        st.info("Track is shorter than 1 km, no records to compare")
    else:
        if update.improved_count:
            st.success(f"🏆 {update.improved_count} new personal record(s)!")
        if update.improved_count and not update.saved:
            st.warning("New records could not be saved and will be lost on restart")

        for row in update.to_rows():
            label = format_distance_name(row['distance'])
            if row['isNew']:
                label = f"🏆 {label}"
            delta = None
            if row['previousBest'] is not None:
                delta = f"{(row['time'] - row['previousBest']) / 1000:+.1f}s"
            st.metric(
                label,
                format_record_time(row['time']),
                delta=delta,
                delta_color='inverse'
            )

        with st.expander("Details", expanded=False):
            st.dataframe(records_to_dataframe(update), use_container_width=True, hide_index=True)

    st.subheader("All-Time Records")
    all_records = ledger.records()
    if all_records:
        st.dataframe(ledger_to_dataframe(all_records), use_container_width=True, hide_index=True)
    else:
        st.caption("No records yet")

    if st.button("Reset Records"):
        with get_ledger_lock():
            cleared = ledger.reset()
        st.session_state.record_updates = {}
        if cleared:
            st.success("Records cleared")
        else:
            st.error("Could not clear records")


def main():
    """Main application entry point."""
    init_session_state()

    st.title("🏃 RunTrack")
    st.caption("Run analysis and personal records")

    sidebar_upload()
    settings = sidebar_settings()
    ledger = get_ledger(settings['persist'])

    tracks = st.session_state.tracks
    if not tracks:
        st.info("👈 Upload a GPX or TCX file to get started")

        with st.expander("How to use this tool"):
            st.markdown("""
            1. **Upload one or more runs** exported as GPX or TCX
            2. **Pick a run** to see distance, pace, elevation and heart rate
            3. **Check the Splits tab** for per-km pace
            4. **Open the Records tab** to see best times for 1 km, 5 km, 10 km, half and full marathon
            """)
        return

    track_ids = list(tracks.keys())
    selected_id = st.selectbox(
        "Run",
        track_ids,
        format_func=lambda tid: f"{tracks[tid].name} ({tracks[tid].distance_km:.2f} km)"
    )
    track = tracks[selected_id]

    stats = calculate_track_stats(track)
    update = evaluate_records(ledger, track, settings['persist'])

    tab1, tab2, tab3 = st.tabs(["Overview", "Splits", "Records"])

    with tab1:
        render_overview_tab(track, stats)

    with tab2:
        render_splits_tab(stats)

    with tab3:
        render_records_tab(ledger, update)


if __name__ == "__main__":
    main()
