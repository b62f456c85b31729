"""
Track Statistics Module - Totals, pauses, elevation gain/loss and per-km splits.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Sequence, Tuple
import numpy as np

from gpx_io import Track, TrackPoint


@dataclass
class Pause:
    """A stretch where the runner was effectively stationary."""
    start_point: TrackPoint
    end_point: TrackPoint
    duration_s: float


@dataclass
class Split:
    """One split of the track (normally 1 km)."""
    split_number: int
    distance_km: float
    duration_ms: float
    pace: float               # min/km
    elevation_gain: float
    elevation_loss: float
    avg_hr: Optional[float]
    end_km: float = 0.0       # cumulative distance at the end of the split
    is_fastest: bool = False
    is_slowest: bool = False


@dataclass
class TrackStats:
    """Summary statistics for one track."""
    total_distance_km: float = 0.0
    total_duration_ms: float = 0.0
    moving_duration_ms: float = 0.0
    elevation_gain: float = 0.0
    elevation_loss: float = 0.0
    avg_pace: float = 0.0          # min/km over total time
    moving_avg_pace: float = 0.0   # min/km over moving time
    max_speed_kmh: float = 0.0
    avg_speed_kmh: float = 0.0
    avg_hr: Optional[float] = None
    max_hr: Optional[int] = None
    min_hr: Optional[int] = None
    splits: List[Split] = field(default_factory=list)
    pauses: List[Pause] = field(default_factory=list)


def find_pauses(
    track: Track,
    min_duration_s: float = 10,
    max_speed_kmh: float = 1
) -> List[Pause]:
    """
    Find stretches slower than max_speed_kmh lasting at least min_duration_s.

    Args:
        track: Track to scan
        min_duration_s: Shortest stop that counts as a pause
        max_speed_kmh: Speed below which the runner is considered stopped

    Returns:
        List of Pause objects in track order
    """
    points = track.points
    if len(points) < 2:
        return []

    pauses = []
    pause_start = None

    for i in range(1, len(points)):
        p1 = points[i - 1]
        p2 = points[i]

        distance = p2.distance_km - p1.distance_km
        dt_s = (p2.time_ms - p1.time_ms) / 1000

        speed_kmh = np.inf
        if dt_s > 0.1:
            speed_kmh = distance / dt_s * 3600

        if speed_kmh < max_speed_kmh:
            if pause_start is None:
                pause_start = p1
        elif pause_start is not None:
            duration_s = (p1.time_ms - pause_start.time_ms) / 1000
            if duration_s >= min_duration_s:
                pauses.append(Pause(pause_start, p1, duration_s))
            pause_start = None

    # Pause running to the end of the track
    if pause_start is not None:
        last = points[-1]
        duration_s = (last.time_ms - pause_start.time_ms) / 1000
        if duration_s >= min_duration_s:
            pauses.append(Pause(pause_start, last, duration_s))

    return pauses


def calculate_elevation_stats(
    elevations: Sequence[float],
    threshold: float = 4.0
) -> Tuple[float, float]:
    """
    Elevation gain and loss with a hysteresis filter.

    A climb or descent only counts once the trend reverses by at least
    threshold meters, which ignores GPS jitter on flat ground.

    Args:
        elevations: Elevation samples in meters
        threshold: Reversal needed to close a climb or descent

    Returns:
        (gain, loss) in meters
    """
    if len(elevations) < 2:
        return 0.0, 0.0

    gain = 0.0
    loss = 0.0
    valley = peak = elevations[0]
    climbing = elevations[1] >= elevations[0]

    for ele in elevations[1:]:
        if climbing:
            if ele > peak:
                peak = ele
            elif peak - ele >= threshold:
                gain += max(0.0, peak - valley)
                # descent starts from the peak just closed
                valley = ele
                climbing = False
        else:
            if ele < valley:
                valley = ele
            elif ele - valley >= threshold:
                loss += max(0.0, peak - valley)
                peak = ele
                climbing = True

    if climbing:
        gain += max(0.0, peak - valley)
    else:
        loss += max(0.0, peak - valley)

    return gain, loss


def point_at_distance(track: Track, target_km: float) -> Optional[TrackPoint]:
    """
    Interpolate a point at a cumulative distance along the track.

    Returns None when target_km lies outside the track.
    """
    points = track.points
    for i in range(len(points) - 1):
        p1 = points[i]
        p2 = points[i + 1]
        if p1.distance_km <= target_km <= p2.distance_km:
            segment = p2.distance_km - p1.distance_km
            if segment == 0:
                return p1
            ratio = (target_km - p1.distance_km) / segment
            hr = p1.hr
            if p1.hr is not None and p2.hr is not None:
                hr = round(p1.hr + (p2.hr - p1.hr) * ratio)
            return TrackPoint(
                lat=p1.lat + (p2.lat - p1.lat) * ratio,
                lon=p1.lon + (p2.lon - p1.lon) * ratio,
                elevation=p1.elevation + (p2.elevation - p1.elevation) * ratio,
                time=p1.time + timedelta(milliseconds=(p2.time_ms - p1.time_ms) * ratio),
                distance_km=target_km,
                hr=hr
            )
    return None


def _build_split(number: int, split_points: List[TrackPoint]) -> Split:
    first = split_points[0]
    last = split_points[-1]
    distance = last.distance_km - first.distance_km
    duration = last.time_ms - first.time_ms

    gain = 0.0
    loss = 0.0
    hrs = []
    for i in range(1, len(split_points)):
        diff = split_points[i].elevation - split_points[i - 1].elevation
        if diff > 0:
            gain += diff
        else:
            loss -= diff
        if split_points[i].hr:
            hrs.append(split_points[i].hr)

    return Split(
        split_number=number,
        distance_km=distance,
        duration_ms=duration,
        pace=(duration / 1000 / 60) / distance if distance > 0 else 0.0,
        elevation_gain=gain,
        elevation_loss=loss,
        avg_hr=float(np.mean(hrs)) if hrs else None,
        end_km=last.distance_km
    )


def calculate_splits(track: Track, split_km: float = 1.0) -> List[Split]:
    """
    Split the track every split_km, interpolating each boundary.

    A trailing partial split is kept when longer than 50 m. Fastest and
    slowest are marked among splits of at least 90% full length, and only
    when there are two or more of them.

    Args:
        track: Track to split
        split_km: Split length in kilometers

    Returns:
        List of Split objects
    """
    if len(track.points) < 2:
        return []

    splits = []
    last_boundary = track.points[0]
    boundary_km = split_km

    while boundary_km < track.distance_km:
        boundary = point_at_distance(track, boundary_km)
        if boundary is not None:
            inner = [
                p for p in track.points
                if last_boundary.distance_km < p.distance_km <= boundary.distance_km
            ]
            split_points = [last_boundary] + inner
            if split_points[-1].distance_km < boundary.distance_km:
                split_points.append(boundary)
            splits.append(_build_split(len(splits) + 1, split_points))
            last_boundary = boundary
        boundary_km += split_km

    final_km = track.points[-1].distance_km - last_boundary.distance_km
    if final_km > 0.05:
        inner = [p for p in track.points if p.distance_km > last_boundary.distance_km]
        splits.append(_build_split(len(splits) + 1, [last_boundary] + inner))

    full = [s for s in splits if s.distance_km > split_km * 0.9]
    if len(full) > 1:
        min(full, key=lambda s: s.pace).is_fastest = True
        max(full, key=lambda s: s.pace).is_slowest = True

    return splits


def calculate_track_stats(track: Track) -> TrackStats:
    """
    Compute summary statistics for a track.

    Tracks with fewer than 2 points get zeroed stats.

    Args:
        track: Track to summarize

    Returns:
        TrackStats object
    """
    points = track.points
    if len(points) < 2:
        return TrackStats()

    pauses = find_pauses(track)
    moving_ms = track.duration_ms - sum(p.duration_s for p in pauses) * 1000

    distances = track.get_distances()
    times_ms = track.get_times_ms()
    dt_s = np.diff(times_ms) / 1000
    dd_km = np.diff(distances)
    moving = dt_s > 0
    max_speed = float(np.max(dd_km[moving] / dt_s[moving] * 3600)) if np.any(moving) else 0.0

    gain, loss = calculate_elevation_stats(list(track.get_elevations()))

    heart_rates = [p.hr for p in points[1:] if p.hr is not None and p.hr > 0]

    distance = track.distance_km
    avg_pace = (track.duration_ms / 1000 / 60) / distance if distance > 0 else 0.0
    moving_pace = (moving_ms / 1000 / 60) / distance if distance > 0 and moving_ms > 0 else 0.0
    avg_speed = distance / (moving_ms / 3600000) if distance > 0 and moving_ms > 0 else 0.0

    return TrackStats(
        total_distance_km=distance,
        total_duration_ms=track.duration_ms,
        moving_duration_ms=moving_ms,
        elevation_gain=gain,
        elevation_loss=loss,
        avg_pace=avg_pace,
        moving_avg_pace=moving_pace,
        max_speed_kmh=max_speed,
        avg_speed_kmh=avg_speed,
        avg_hr=float(np.mean(heart_rates)) if heart_rates else None,
        max_hr=max(heart_rates) if heart_rates else None,
        min_hr=min(heart_rates) if heart_rates else None,
        splits=calculate_splits(track),
        pauses=pauses
    )
