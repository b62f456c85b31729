"""
Records Module - Best-segment search over canonical race distances and the
persisted personal-record ledger.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from gpx_io import Track, TrackPoint
from storage import RecordStorage, StorageErr


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CanonicalDistance:
    """A race distance tracked for personal records."""
    name: str
    meters: float

    @property
    def km(self) -> float:
        return self.meters / 1000


PR_DISTANCES = (
    CanonicalDistance('1 km', 1000),
    CanonicalDistance('5 km', 5000),
    CanonicalDistance('10 km', 10000),
    CanonicalDistance('Half Marathon', 21097.5),
    CanonicalDistance('Marathon', 42195),
)

# Final segments shorter than this (km) are duplicate positions, not movement
MIN_SEGMENT_KM = 1e-6


@dataclass
class FoundRecord:
    """Best time for one distance within a single track."""
    distance: float   # meters
    time: float       # milliseconds


@dataclass
class PersonalRecord:
    """Best known time for one canonical distance."""
    distance: float   # meters
    time: float       # milliseconds
    track_id: str
    track_name: str
    date: str         # ISO-8601 UTC start time of the owning track

    def to_dict(self) -> dict:
        """Convert to the persisted JSON shape."""
        return {
            'distance': self.distance,
            'time': self.time,
            'trackId': self.track_id,
            'trackName': self.track_name,
            'date': self.date
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PersonalRecord':
        """Create from the persisted JSON shape."""
        return cls(
            distance=float(data['distance']),
            time=float(data['time']),
            track_id=str(data['trackId']),
            track_name=str(data['trackName']),
            date=str(data['date'])
        )


@dataclass
class RecordResult:
    """Outcome of comparing one found record against the ledger."""
    record: PersonalRecord
    is_new_best: bool
    previous_best_ms: Optional[float] = None


@dataclass
class LedgerUpdate:
    """Per-distance results of one ledger update."""
    results: Dict[float, RecordResult] = field(default_factory=dict)
    improved_count: int = 0
    saved: bool = False

    def to_rows(self) -> List[Dict[str, Any]]:
        """Flatten into display rows, shortest distance first."""
        rows = []
        for distance in sorted(self.results):
            result = self.results[distance]
            row = result.record.to_dict()
            row['isNew'] = result.is_new_best
            row['previousBest'] = result.previous_best_ms
            rows.append(row)
        return rows


def distance_key(meters: float) -> str:
    """Storage key for a distance: '1000', '21097.5'."""
    meters = float(meters)
    if meters.is_integer():
        return str(int(meters))
    return repr(meters)


def iso_timestamp(dt: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. 2024-05-01T07:30:00.000Z."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S') + f".{dt.microsecond // 1000:03d}Z"


def find_best_time_for_distance(
    points: Sequence[TrackPoint],
    target_distance_km: float
) -> Optional[float]:
    """
    Find the fastest time over any contiguous stretch of exactly
    target_distance_km.

    Sliding window: for each start index the end index advances until the
    window covers the target distance. The end index is never reset, so
    the scan is a single forward pass. The end time is linearly
    interpolated inside the last segment so that the window is exactly
    the target length.

    Args:
        points: Track points sorted by time with cumulative distance
        target_distance_km: Distance to find the best time for, in kilometers

    Returns:
        Best elapsed time in milliseconds, or None if the track is too short
    """
    if len(points) < 2 or points[-1].distance_km < target_distance_km:
        return None

    distances = [p.distance_km for p in points]
    times = [p.time_ms for p in points]
    n = len(points)

    best_time = math.inf
    end = 0

    for start in range(n):
        start_distance = distances[start]

        while end < n and distances[end] - start_distance < target_distance_km:
            end += 1
        if end >= n:
            # Distance is monotonic, no later start can cover the target either
            break

        window_distance = distances[end] - start_distance
        overshoot = window_distance - target_distance_km
        last_segment = distances[end] - distances[end - 1]

        if last_segment > MIN_SEGMENT_KM:
            # overshoot <= last_segment because the window was just completed
            ratio = (last_segment - overshoot) / last_segment
            end_time = times[end - 1] + (times[end] - times[end - 1]) * ratio
        else:
            end_time = times[end]

        duration = end_time - times[start]
        if duration < best_time:
            best_time = duration

    return None if best_time == math.inf else best_time


def find_records_in_track(
    track: Track,
    distances: Sequence[CanonicalDistance] = PR_DISTANCES
) -> List[FoundRecord]:
    """
    Scan a track for its best time over each canonical distance.

    Args:
        track: The track to analyze
        distances: Distance catalog, ascending

    Returns:
        One FoundRecord per distance the track covers, shortest first
    """
    found = []
    for canonical in sorted(distances, key=lambda d: d.meters):
        if track.distance_km < canonical.km:
            logger.debug("%s too short for %s (%.2f km)", track.name, canonical.name, track.distance_km)
            continue
        best = find_best_time_for_distance(track.points, canonical.km)
        # A zero duration only comes from duplicate timestamps
        if best:
            found.append(FoundRecord(distance=canonical.meters, time=best))
    return found


class RecordLedger:
    """
    All-time best record per canonical distance, persisted through an
    injected storage port.

    Not safe for concurrent writers: callers that evaluate tracks in
    parallel must serialize update_records themselves.
    """

    def __init__(self, storage: RecordStorage):
        self.storage = storage

    def load(self) -> Dict[str, PersonalRecord]:
        """
        Read the stored records.

        Unreadable or malformed data is logged and treated as an empty ledger.
        """
        result = self.storage.read()
        if isinstance(result, StorageErr):
            logger.error("Failed to read personal records: %s", result.reason)
            return {}

        records = {}
        try:
            for key, data in result.value.items():
                records[key] = PersonalRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Failed to read personal records: malformed entry (%s)", e)
            return {}
        return records

    def records(self) -> List[PersonalRecord]:
        """All stored records, shortest distance first."""
        return sorted(self.load().values(), key=lambda r: r.distance)

    def update_records(self, track: Track, found: Sequence[FoundRecord]) -> LedgerUpdate:
        """
        Merge a track's found times into the ledger.

        A found time replaces the stored record only when strictly faster.
        The full mapping is written once, and only if something improved.

        Args:
            track: The track the records were found in
            found: Output of find_records_in_track

        Returns:
            LedgerUpdate with a RecordResult per found distance
        """
        stored = self.load()
        date = iso_timestamp(track.start_time or datetime.now(timezone.utc))
        update = LedgerUpdate()

        for found_record in found:
            key = distance_key(found_record.distance)
            existing = stored.get(key)

            record = PersonalRecord(
                distance=found_record.distance,
                time=found_record.time,
                track_id=track.id,
                track_name=track.name,
                date=date
            )

            if existing is None or found_record.time < existing.time:
                update.results[found_record.distance] = RecordResult(
                    record=record,
                    is_new_best=True,
                    previous_best_ms=existing.time if existing is not None else None
                )
                stored[key] = record
                update.improved_count += 1
                logger.info("New record for %s m: %.0f ms (%s)", key, found_record.time, track.name)
            else:
                update.results[found_record.distance] = RecordResult(
                    record=record,
                    is_new_best=False,
                    previous_best_ms=existing.time
                )

        if update.improved_count > 0:
            result = self.storage.write({k: r.to_dict() for k, r in stored.items()})
            if isinstance(result, StorageErr):
                logger.warning("Failed to save personal records: %s", result.reason)
            else:
                update.saved = True

        return update

    def evaluate_track(self, track: Track) -> LedgerUpdate:
        """Find a track's records and merge them into the ledger."""
        return self.update_records(track, find_records_in_track(track))

    def reset(self) -> bool:
        """Clear all stored records. Returns False if the write failed."""
        result = self.storage.write({})
        if isinstance(result, StorageErr):
            logger.warning("Failed to clear personal records: %s", result.reason)
            return False
        return True
