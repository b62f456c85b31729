"""
GPX/TCX I/O Module - Parse activity files, smooth elevation, build timed tracks.
"""

import logging
import math
import os
import tempfile
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
import numpy as np
import gpxpy
import gpxpy.gpx
from scipy.signal import savgol_filter
from tcxreader.tcxreader import TCXReader


logger = logging.getLogger(__name__)


class TrackParseError(ValueError):
    """Raised when an activity file cannot be turned into a track."""


@dataclass
class RawTrackPoint:
    """Raw timed point from a GPX or TCX file."""
    lat: float
    lon: float
    elevation: float
    time: datetime
    hr: Optional[int] = None


@dataclass
class TrackPoint:
    """Processed track point with cumulative distance."""
    lat: float
    lon: float
    elevation: float       # smoothed elevation (m)
    time: datetime
    distance_km: float     # cumulative distance from start
    hr: Optional[int] = None

    @property
    def time_ms(self) -> float:
        return to_epoch_ms(self.time)


@dataclass
class Track:
    """Complete processed activity."""
    id: str
    name: str
    points: List[TrackPoint]
    distance_km: float
    duration_ms: float

    @property
    def n_points(self) -> int:
        return len(self.points)

    @property
    def start_time(self) -> Optional[datetime]:
        return self.points[0].time if self.points else None

    def get_distances(self) -> np.ndarray:
        return np.array([p.distance_km for p in self.points])

    def get_times_ms(self) -> np.ndarray:
        return np.array([p.time_ms for p in self.points])

    def get_elevations(self) -> np.ndarray:
        return np.array([p.elevation for p in self.points])

    def get_heart_rates(self) -> np.ndarray:
        return np.array([p.hr if p.hr is not None else np.nan for p in self.points])


# Earth radius in kilometers
EARTH_RADIUS_KM = 6371.0

DEFAULT_SMOOTHING_WINDOW = 15


def to_epoch_ms(dt: datetime) -> float:
    """Milliseconds since the Unix epoch. Naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp() * 1000


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates in degrees
        lat2, lon2: Second point coordinates in degrees

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def _heart_rate_from_extensions(point: gpxpy.gpx.GPXTrackPoint) -> Optional[int]:
    """Find an <hr> value inside Garmin-style TrackPointExtension elements."""
    for extension in point.extensions:
        for element in extension.iter():
            if _local_name(element.tag) == 'hr' and element.text:
                try:
                    return int(float(element.text))
                except ValueError:
                    return None
    return None


def _points_from_gpx(gpx: gpxpy.gpx.GPX) -> List[RawTrackPoint]:
    points = []
    for track in gpx.tracks:
        for segment in track.segments:
            for point in segment.points:
                # Untimed points cannot contribute to splits or records
                if point.time is None:
                    continue
                elevation = point.elevation if point.elevation is not None else 0.0
                points.append(RawTrackPoint(
                    lat=point.latitude,
                    lon=point.longitude,
                    elevation=elevation,
                    time=point.time,
                    hr=_heart_rate_from_extensions(point)
                ))
    return points


def parse_gpx_from_string(gpx_string: str) -> List[RawTrackPoint]:
    """
    Parse GPX content from a string.

    Args:
        gpx_string: GPX file content as string

    Returns:
        List of RawTrackPoint objects
    """
    gpx = gpxpy.parse(gpx_string)
    return _points_from_gpx(gpx)


def gpx_track_name(gpx: gpxpy.gpx.GPX) -> Optional[str]:
    """Return the first track (or document) name of a parsed GPX, if any."""
    for track in gpx.tracks:
        if track.name:
            return track.name
    return gpx.name or None


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def parse_tcx(file_path: str) -> List[RawTrackPoint]:
    """
    Parse a Garmin Training Center XML file with tcxreader.

    Trackpoints without a time or position are skipped. A missing
    altitude becomes 0 m.

    Args:
        file_path: Path to TCX file

    Returns:
        List of RawTrackPoint objects in file order

    Raises:
        TrackParseError: If the document or one of its values is malformed
    """
    try:
        activity = TCXReader().read(file_path)
        points = []
        for tp in activity.trackpoints:
            if tp.time is None or tp.latitude is None or tp.longitude is None:
                continue
            points.append(RawTrackPoint(
                lat=float(tp.latitude),
                lon=float(tp.longitude),
                elevation=float(tp.elevation) if tp.elevation is not None else 0.0,
                time=tp.time,
                hr=int(tp.hr_value) if tp.hr_value is not None else None
            ))
    except (ET.ParseError, ValueError, TypeError, AttributeError, KeyError, IndexError, ZeroDivisionError) as e:
        raise TrackParseError(f"Invalid TCX document: {e}") from e
    return points


def parse_tcx_from_string(tcx_string: str) -> List[RawTrackPoint]:
    """
    Parse TCX content from a string.

    tcxreader only reads from a path, so the content goes through a
    temporary file.

    Args:
        tcx_string: TCX file content as string

    Returns:
        List of RawTrackPoint objects
    """
    with tempfile.NamedTemporaryFile('w', suffix='.tcx', encoding='utf-8', delete=False) as tmp:
        tmp.write(tcx_string)
        tmp_path = tmp.name
    try:
        return parse_tcx(tmp_path)
    finally:
        os.remove(tmp_path)


def smooth_elevation(
    elevations: np.ndarray,
    method: str = 'rolling',
    window: int = DEFAULT_SMOOTHING_WINDOW,
    polyorder: int = 2
) -> np.ndarray:
    """
    Smooth elevation data to reduce GPS noise.

    Args:
        elevations: Raw elevation array
        method: 'rolling' for a centered moving average or 'savgol' for Savitzky-Golay
        window: Window size (made odd for savgol)
        polyorder: Polynomial order for savgol filter

    Returns:
        Smoothed elevation array
    """
    elevations = np.asarray(elevations, dtype=float)
    if len(elevations) < window:
        return elevations.copy()

    if method == 'rolling':
        # Centered mean, the window shrinks at both ends instead of padding
        half = window // 2
        cumsum = np.concatenate(([0.0], np.cumsum(elevations)))
        idx = np.arange(len(elevations))
        starts = np.maximum(0, idx - half)
        ends = np.minimum(len(elevations), idx + half + 1)
        return (cumsum[ends] - cumsum[starts]) / (ends - starts)

    elif method == 'savgol':
        if window % 2 == 0:
            window += 1
        window = min(window, len(elevations))
        if window % 2 == 0:
            window -= 1
        if window < 3:
            return elevations.copy()
        polyorder = min(polyorder, window - 1)
        return savgol_filter(elevations, window, polyorder)

    else:
        return elevations.copy()


def compute_cumulative_distances(points: List[RawTrackPoint]) -> np.ndarray:
    """
    Compute cumulative distances along the track.

    Args:
        points: List of raw track points

    Returns:
        Array of cumulative distances in kilometers
    """
    distances = [0.0]
    for i in range(1, len(points)):
        dist = haversine_distance(
            points[i-1].lat, points[i-1].lon,
            points[i].lat, points[i].lon
        )
        distances.append(distances[-1] + dist)
    return np.array(distances)


def build_track(
    raw_points: List[RawTrackPoint],
    name: str,
    track_id: Optional[str] = None,
    smoothing_method: str = 'rolling',
    smoothing_window: int = DEFAULT_SMOOTHING_WINDOW
) -> Track:
    """
    Turn raw points into a Track: sort by time, smooth elevation and
    accumulate distance exactly once.

    Args:
        raw_points: Parsed points in file order
        name: Display name
        track_id: Identity; generated from the name and current time if omitted
        smoothing_method: Method for elevation smoothing
        smoothing_window: Window size for smoothing

    Returns:
        Track object
    """
    if len(raw_points) < 2:
        raise TrackParseError("Need at least 2 timed points to create a track")

    ordered = sorted(raw_points, key=lambda p: to_epoch_ms(p.time))

    elevations = smooth_elevation(
        np.array([p.elevation for p in ordered]),
        method=smoothing_method,
        window=smoothing_window
    )
    distances = compute_cumulative_distances(ordered)

    points = [
        TrackPoint(
            lat=p.lat,
            lon=p.lon,
            elevation=float(elevations[i]),
            time=p.time,
            distance_km=float(distances[i]),
            hr=p.hr
        )
        for i, p in enumerate(ordered)
    ]

    if track_id is None:
        track_id = f"{name}-{int(time.time() * 1000)}"

    return Track(
        id=track_id,
        name=name,
        points=points,
        distance_km=float(distances[-1]),
        duration_ms=points[-1].time_ms - points[0].time_ms
    )


def load_track_from_string(
    content: str,
    file_name: str,
    track_id: Optional[str] = None,
    smoothing_window: int = DEFAULT_SMOOTHING_WINDOW
) -> Track:
    """
    Load and process GPX or TCX content, chosen by file extension.

    Args:
        content: File content as string
        file_name: Original file name, used for format and default name
        track_id: Optional track identity
        smoothing_window: Window size for elevation smoothing

    Returns:
        Processed Track object
    """
    stem, ext = os.path.splitext(os.path.basename(file_name))
    ext = ext.lower()

    if ext == '.gpx':
        try:
            gpx = gpxpy.parse(content)
        except gpxpy.gpx.GPXException as e:
            raise TrackParseError(f"Invalid GPX document: {e}") from e
        raw_points = _points_from_gpx(gpx)
        name = gpx_track_name(gpx) or stem
    elif ext == '.tcx':
        raw_points = parse_tcx_from_string(content)
        name = stem
    else:
        raise TrackParseError(f"Unsupported file type: {file_name}")

    track = build_track(
        raw_points,
        name=name,
        track_id=track_id,
        smoothing_window=smoothing_window
    )
    logger.info("Loaded %s: %d points, %.2f km", file_name, track.n_points, track.distance_km)
    return track


def load_track(file_path: str, track_id: Optional[str] = None) -> Track:
    """
    Convenience function to load and process an activity file from disk.

    Args:
        file_path: Path to a .gpx or .tcx file
        track_id: Optional track identity

    Returns:
        Processed Track object
    """
    with open(file_path, 'r', encoding='utf-8') as f:
        content = f.read()
    return load_track_from_string(content, file_path, track_id=track_id)
