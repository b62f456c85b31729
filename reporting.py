"""
Reporting Module - Record/split tables, time and pace formatting, Plotly charts.
"""

import math
from typing import List, Optional, Sequence
import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots

from gpx_io import Track
from records import PR_DISTANCES, LedgerUpdate, PersonalRecord
from track_stats import Split


def format_record_time(ms: float) -> str:
    """Format milliseconds as MM:SS.ss or H:MM:SS.ss."""
    centis = int(round(ms / 10))
    hours = centis // 360000
    minutes = (centis % 360000) // 6000
    seconds = (centis % 6000) / 100

    text = f"{hours}:" if hours > 0 else ""
    return text + f"{minutes:02d}:{seconds:05.2f}"


def format_duration(ms: float) -> str:
    """Format milliseconds as M:SS or H:MM:SS."""
    seconds = int(ms // 1000)
    if seconds < 3600:
        return f"{seconds // 60}:{seconds % 60:02d}"
    return f"{seconds // 3600}:{(seconds % 3600) // 60:02d}:{seconds % 60:02d}"


def format_pace(pace: float) -> str:
    """Format a pace in min/km as M:SS."""
    if not math.isfinite(pace) or pace <= 0:
        return '--:--'
    minutes = int(pace)
    seconds = int(round((pace - minutes) * 60))
    if seconds == 60:
        minutes += 1
        seconds = 0
    return f"{minutes}:{seconds:02d}"


def format_distance_name(meters: float) -> str:
    """Catalog name for a record distance, or the distance in km."""
    for canonical in PR_DISTANCES:
        if canonical.meters == meters:
            return canonical.name
    return f"{meters / 1000:.2f} km"


def records_to_dataframe(update: LedgerUpdate) -> pd.DataFrame:
    """
    Convert one track's ledger results to a display table.

    Args:
        update: Result of RecordLedger.update_records

    Returns:
        DataFrame, one row per distance, shortest first
    """
    data = []
    for row in update.to_rows():
        previous = row['previousBest']
        if previous is None:
            delta = ''
        else:
            delta = f"{(row['time'] - previous) / 1000:+.1f}s"
        data.append({
            'Distance': format_distance_name(row['distance']),
            'Time': format_record_time(row['time']),
            'Pace (/km)': format_pace(row['time'] / 60000 / (row['distance'] / 1000)),
            'New Record': row['isNew'],
            'Previous Best': format_record_time(previous) if previous is not None else '',
            'Delta': delta
        })

    return pd.DataFrame(data, columns=['Distance', 'Time', 'Pace (/km)', 'New Record', 'Previous Best', 'Delta'])


def ledger_to_dataframe(records: Sequence[PersonalRecord]) -> pd.DataFrame:
    """Convert the all-time records to a display table."""
    data = []
    for record in records:
        data.append({
            'Distance': format_distance_name(record.distance),
            'Time': format_record_time(record.time),
            'Track': record.track_name,
            'Date': record.date[:10]
        })

    return pd.DataFrame(data, columns=['Distance', 'Time', 'Track', 'Date'])


def splits_to_dataframe(splits: List[Split]) -> pd.DataFrame:
    """
    Convert splits to pandas DataFrame.

    Args:
        splits: List of splits

    Returns:
        DataFrame with split data
    """
    data = []
    for split in splits:
        marker = 'fastest' if split.is_fastest else 'slowest' if split.is_slowest else ''
        data.append({
            'Split': split.split_number,
            'Distance (km)': f"{split.distance_km:.2f}",
            'Time': format_duration(split.duration_ms),
            'Pace (/km)': format_pace(split.pace),
            'Gain (m)': int(round(split.elevation_gain)),
            'Loss (m)': int(round(split.elevation_loss)),
            'Avg HR': int(round(split.avg_hr)) if split.avg_hr is not None else None,
            '': marker
        })

    return pd.DataFrame(data)


def rolling_pace(track: Track, window_s: float = 30.0) -> np.ndarray:
    """
    Pace (min/km) at each point, averaged over a centered time window.

    Points where the runner did not move get NaN so charts leave a gap.
    """
    times = track.get_times_ms()
    distances = track.get_distances()
    if len(times) < 2:
        return np.full(len(times), np.nan)

    # Widen to the samples at or just outside each window edge
    half = window_s * 1000 / 2
    lo = np.clip(np.searchsorted(times, times - half, side='right') - 1, 0, len(times) - 1)
    hi = np.clip(np.searchsorted(times, times + half, side='left'), 0, len(times) - 1)

    dist = distances[hi] - distances[lo]
    hours = (times[hi] - times[lo]) / 3600000

    with np.errstate(divide='ignore', invalid='ignore'):
        speed = np.where(hours > 0, dist / hours, 0.0)
        pace = np.where(speed > 0.1, 60 / speed, np.nan)
    return pace


def create_pace_plot(
    track: Track,
    window_s: float = 30.0,
    title: str = "Pace vs Distance"
) -> go.Figure:
    """
    Create pace vs distance plot, with heart rate when the track has it.

    Args:
        track: Track data
        window_s: Smoothing window for pace
        title: Plot title

    Returns:
        Plotly Figure
    """
    distances = track.get_distances()
    pace = rolling_pace(track, window_s)
    heart_rates = track.get_heart_rates()
    has_hr = bool(np.any(~np.isnan(heart_rates))) if len(heart_rates) else False

    fig = make_subplots(specs=[[{"secondary_y": True}]])

    fig.add_trace(
        go.Scatter(
            x=distances,
            y=pace,
            mode='lines',
            name='Pace (min/km)',
            line=dict(color='#2196F3', width=2)
        ),
        secondary_y=False
    )

    if has_hr:
        fig.add_trace(
            go.Scatter(
                x=distances,
                y=heart_rates,
                mode='lines',
                name='Heart Rate (bpm)',
                line=dict(color='#F44336', width=1),
                opacity=0.7
            ),
            secondary_y=True
        )

    fig.update_layout(
        title=title,
        height=400,
        showlegend=True,
        legend=dict(orientation="h", yanchor="bottom", y=1.02)
    )

    fig.update_xaxes(title_text="Distance (km)")
    # Faster pace at the top
    fig.update_yaxes(title_text="Pace (min/km)", autorange='reversed', secondary_y=False)
    fig.update_yaxes(title_text="Heart Rate (bpm)", secondary_y=True)

    return fig


def create_elevation_profile(
    track: Track,
    splits: Optional[List[Split]] = None,
    title: str = "Elevation Profile"
) -> go.Figure:
    """
    Create elevation profile with split markers.

    Args:
        track: Track data
        splits: Optional splits; each boundary gets a dashed line
        title: Plot title

    Returns:
        Plotly Figure
    """
    distances = track.get_distances()
    elevations = track.get_elevations()

    fig = go.Figure()

    fig.add_trace(
        go.Scatter(
            x=distances,
            y=elevations,
            mode='lines',
            name='Elevation',
            fill='tozeroy',
            line=dict(color='#795548', width=2),
            fillcolor='rgba(121, 85, 72, 0.3)'
        )
    )

    if splits:
        for split in splits[:-1]:
            fig.add_vline(
                x=split.end_km,
                line_dash="dash",
                line_color="gray",
                opacity=0.5
            )

    fig.update_layout(
        title=title,
        xaxis_title="Distance (km)",
        yaxis_title="Elevation (m)",
        height=400
    )

    return fig


def create_splits_chart(
    splits: List[Split],
    title: str = "Split Paces"
) -> go.Figure:
    """
    Create bar chart of split paces with fastest/slowest highlighted.

    Args:
        splits: List of splits
        title: Plot title

    Returns:
        Plotly Figure
    """
    names = [f"Km {s.split_number}" for s in splits]
    paces = [s.pace for s in splits]
    colors = [
        '#4CAF50' if s.is_fastest else '#F44336' if s.is_slowest else '#2196F3'
        for s in splits
    ]

    fig = go.Figure()

    fig.add_trace(
        go.Bar(
            x=names,
            y=paces,
            name='Pace (min/km)',
            marker_color=colors,
            text=[format_pace(p) for p in paces],
            textposition='outside'
        )
    )

    fig.update_layout(
        title=title,
        height=400,
        showlegend=False,
        yaxis_title="Pace (min/km)"
    )

    return fig
