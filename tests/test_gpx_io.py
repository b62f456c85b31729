"""
Tests for gpx_io module.
"""

import pytest
import numpy as np
import sys
import os
from datetime import datetime, timezone

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gpx_io import (
    haversine_distance, parse_gpx_from_string, parse_tcx_from_string,
    compute_cumulative_distances, smooth_elevation, build_track,
    load_track_from_string, load_track, to_epoch_ms, TrackParseError
)


# Sample GPX content for testing: ~100 m per point heading north, 30 s apart
SAMPLE_GPX = """<?xml version="1.0" encoding="UTF-8"?>
<gpx version="1.1" creator="test"
     xmlns="http://www.topografix.com/GPX/1/1"
     xmlns:gpxtpx="http://www.garmin.com/xmlschemas/TrackPointExtension/v1">
  <trk>
    <name>Test Run</name>
    <trkseg>
      <trkpt lat="45.0000" lon="-122.0000"><ele>100</ele><time>2024-05-01T07:30:00Z</time>
        <extensions><gpxtpx:TrackPointExtension><gpxtpx:hr>120</gpxtpx:hr></gpxtpx:TrackPointExtension></extensions>
      </trkpt>
      <trkpt lat="45.0009" lon="-122.0000"><ele>110</ele><time>2024-05-01T07:30:30Z</time>
        <extensions><gpxtpx:TrackPointExtension><gpxtpx:hr>130</gpxtpx:hr></gpxtpx:TrackPointExtension></extensions>
      </trkpt>
      <trkpt lat="45.0018" lon="-122.0000"><ele>120</ele><time>2024-05-01T07:31:00Z</time></trkpt>
      <trkpt lat="45.0027" lon="-122.0000"><ele>130</ele><time>2024-05-01T07:31:30Z</time></trkpt>
      <trkpt lat="45.0036" lon="-122.0000"><ele>140</ele><time>2024-05-01T07:32:00Z</time></trkpt>
      <trkpt lat="45.0045" lon="-122.0000"><ele>150</ele><time>2024-05-01T07:32:30Z</time></trkpt>
      <trkpt lat="45.0050" lon="-122.0000"><ele>150</ele></trkpt>
    </trkseg>
  </trk>
</gpx>
"""

SAMPLE_TCX = """<?xml version="1.0" encoding="UTF-8"?>
<TrainingCenterDatabase xmlns="http://www.garmin.com/xmlschemas/TrainingCenterDatabase/v2">
  <Activities>
    <Activity Sport="Running">
      <Id>2024-05-01T07:30:00Z</Id>
      <Lap StartTime="2024-05-01T07:30:00Z">
        <TotalTimeSeconds>65</TotalTimeSeconds>
        <DistanceMeters>200</DistanceMeters>
        <Calories>15</Calories>
        <Intensity>Active</Intensity>
        <TriggerMethod>Manual</TriggerMethod>
        <Track>
          <Trackpoint>
            <Time>2024-05-01T07:30:30Z</Time>
            <Position><LatitudeDegrees>45.0009</LatitudeDegrees><LongitudeDegrees>-122.0</LongitudeDegrees></Position>
            <AltitudeMeters>110</AltitudeMeters>
            <HeartRateBpm><Value>131</Value></HeartRateBpm>
          </Trackpoint>
          <Trackpoint>
            <Time>2024-05-01T07:30:00Z</Time>
            <Position><LatitudeDegrees>45.0000</LatitudeDegrees><LongitudeDegrees>-122.0</LongitudeDegrees></Position>
            <AltitudeMeters>100</AltitudeMeters>
            <HeartRateBpm><Value>122</Value></HeartRateBpm>
          </Trackpoint>
          <Trackpoint>
            <Time>2024-05-01T07:31:00Z</Time>
            <Position><LatitudeDegrees>45.0018</LatitudeDegrees><LongitudeDegrees>-122.0</LongitudeDegrees></Position>
          </Trackpoint>
          <Trackpoint>
            <Time>2024-05-01T07:31:05Z</Time>
          </Trackpoint>
        </Track>
      </Lap>
    </Activity>
  </Activities>
</TrainingCenterDatabase>
"""


class TestHaversine:
    """Tests for haversine distance calculation."""

    def test_same_point_zero_distance(self):
        """Same point should have zero distance."""
        dist = haversine_distance(45.0, -122.0, 45.0, -122.0)
        assert dist == 0.0

    def test_known_distance(self):
        """Test against known distance."""
        # ~1 degree latitude is roughly 111 km
        dist = haversine_distance(45.0, -122.0, 46.0, -122.0)
        assert 110 < dist < 112

    def test_symmetry(self):
        """Distance should be symmetric."""
        d1 = haversine_distance(45.0, -122.0, 45.5, -121.5)
        d2 = haversine_distance(45.5, -121.5, 45.0, -122.0)
        assert abs(d1 - d2) < 1e-5


class TestEpochMs:
    """Tests for timestamp conversion."""

    def test_aware(self):
        assert to_epoch_ms(datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)) == 1000

    def test_naive_is_utc(self):
        assert to_epoch_ms(datetime(1970, 1, 1, 0, 1)) == 60000


class TestGpxParsing:
    """Tests for GPX parsing."""

    def test_parse_sample_gpx(self):
        """Timed points are parsed; the untimed one is dropped."""
        points = parse_gpx_from_string(SAMPLE_GPX)
        assert len(points) == 6
        assert points[0].lat == 45.0
        assert points[0].elevation == 100
        assert points[-1].elevation == 150
        assert points[0].time == datetime(2024, 5, 1, 7, 30, tzinfo=timezone.utc)

    def test_heart_rate_extension(self):
        """Heart rate is read from TrackPointExtension."""
        points = parse_gpx_from_string(SAMPLE_GPX)
        assert points[0].hr == 120
        assert points[1].hr == 130
        assert points[2].hr is None

    def test_compute_distances(self):
        """Cumulative distances should be monotonically increasing."""
        points = parse_gpx_from_string(SAMPLE_GPX)
        distances = compute_cumulative_distances(points)

        assert distances[0] == 0
        assert all(distances[i] <= distances[i+1] for i in range(len(distances)-1))
        assert distances[-1] == pytest.approx(0.5, rel=0.01)


class TestTcxParsing:
    """Tests for TCX parsing."""

    def test_parse_sample_tcx(self):
        """Positionless trackpoints are skipped."""
        points = parse_tcx_from_string(SAMPLE_TCX)
        assert len(points) == 3
        assert points[0].hr == 131
        assert points[1].elevation == 100
        assert points[2].elevation == 0.0
        assert points[2].hr is None

    def test_invalid_tcx(self):
        with pytest.raises(TrackParseError):
            parse_tcx_from_string('<TrainingCenterDatabase><oops>')

    def test_bad_coordinate_is_parse_error(self):
        """A non-numeric latitude is reported as a parse error."""
        broken = SAMPLE_TCX.replace('<LatitudeDegrees>45.0018<', '<LatitudeDegrees>abc<')
        with pytest.raises(TrackParseError):
            load_track_from_string(broken, 'run.tcx')

    def test_times_in_epoch_order(self):
        """Parsed times convert to the expected epoch milliseconds."""
        points = parse_tcx_from_string(SAMPLE_TCX)
        start = to_epoch_ms(datetime(2024, 5, 1, 7, 30, tzinfo=timezone.utc))
        assert [to_epoch_ms(p.time) - start for p in points] == [30000, 0, 60000]


class TestElevationSmoothing:
    """Tests for elevation smoothing."""

    def test_smoothing_reduces_noise(self):
        """Smoothing should reduce noise/variability."""
        noisy = np.array([100, 105, 98, 112, 95, 108, 102, 115, 99, 110, 101, 109, 97, 111, 103, 106])

        smoothed = smooth_elevation(noisy)

        assert np.std(smoothed) < np.std(noisy)

    def test_short_input_unchanged(self):
        """Fewer samples than the window are returned as-is."""
        original = np.array([100, 110, 120, 130, 140])
        smoothed = smooth_elevation(original, window=15)
        assert np.array_equal(smoothed, original)

    def test_rolling_is_centered_mean(self):
        """Interior points average the full window, edges a shrunken one."""
        original = np.array([0.0, 3.0, 6.0, 9.0, 12.0])
        smoothed = smooth_elevation(original, method='rolling', window=3)
        assert smoothed[2] == pytest.approx(6.0)
        assert smoothed[0] == pytest.approx(1.5)
        assert smoothed[-1] == pytest.approx(10.5)

    def test_savgol_method(self):
        """Savitzky-Golay smoothing should preserve length."""
        original = np.array([100, 110, 120, 130, 140, 150, 160])
        smoothed = smooth_elevation(original, method='savgol', window=5)
        assert len(smoothed) == len(original)


class TestBuildTrack:
    """Tests for track construction."""

    def test_sorts_by_time(self):
        """Out-of-order points are sorted before distances are computed."""
        points = parse_tcx_from_string(SAMPLE_TCX)
        track = build_track(points, name='Out Of Order', track_id='t1')

        times = [p.time_ms for p in track.points]
        assert times == sorted(times)
        assert track.points[0].lat == 45.0
        assert track.points[0].distance_km == 0.0

    def test_totals(self):
        points = parse_gpx_from_string(SAMPLE_GPX)
        track = build_track(points, name='Test Run', track_id='t1')

        assert track.id == 't1'
        assert track.distance_km == pytest.approx(track.points[-1].distance_km)
        assert track.duration_ms == 150000
        assert track.n_points == 6

    def test_distances_non_decreasing(self):
        points = parse_gpx_from_string(SAMPLE_GPX)
        track = build_track(points, name='Test Run')
        distances = track.get_distances()
        assert np.all(np.diff(distances) >= 0)

    def test_default_id(self):
        points = parse_gpx_from_string(SAMPLE_GPX)
        track = build_track(points, name='Test Run')
        assert track.id.startswith('Test Run-')

    def test_too_few_points(self):
        points = parse_gpx_from_string(SAMPLE_GPX)[:1]
        with pytest.raises(TrackParseError):
            build_track(points, name='One Point')


class TestLoadTrack:
    """Tests for format dispatch."""

    def test_gpx_uses_document_name(self):
        track = load_track_from_string(SAMPLE_GPX, 'upload.gpx')
        assert track.name == 'Test Run'

    def test_tcx_uses_file_stem(self):
        track = load_track_from_string(SAMPLE_TCX, 'Evening Jog.TCX')
        assert track.name == 'Evening Jog'
        assert track.n_points == 3

    def test_unsupported_extension(self):
        with pytest.raises(TrackParseError):
            load_track_from_string(SAMPLE_GPX, 'run.fit')

    def test_invalid_gpx(self):
        with pytest.raises(TrackParseError):
            load_track_from_string('<gpx><trk>', 'broken.gpx')

    def test_load_from_disk(self, tmp_path):
        path = tmp_path / 'morning.gpx'
        path.write_text(SAMPLE_GPX, encoding='utf-8')
        track = load_track(str(path), track_id='disk')
        assert track.id == 'disk'
        assert track.name == 'Test Run'

    def test_load_tcx_from_disk(self, tmp_path):
        path = tmp_path / 'Track Session.tcx'
        path.write_text(SAMPLE_TCX, encoding='utf-8')
        track = load_track(str(path), track_id='disk-tcx')
        assert track.name == 'Track Session'
        assert track.n_points == 3
        assert track.points[0].hr == 122


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
