import numpy as np
from numpy.testing import assert_array_equal, assert_allclose

import pytest

import pyconsensus as pc
from pyconsensus.conftest import make_store
from pyconsensus.detectors import (SEQUENTIAL_CHECKS, flag_extreme_values,
                                   flag_flatline, flag_linear_trend,
                                   flag_peak_to_peak, flag_step_like,
                                   linear_trend, moving_windows)


def _noise(n_epochs=4, n_channels=3, n_times=100, seed=0):
    rng = np.random.RandomState(seed)
    return rng.uniform(-5, 5, size=(n_epochs, n_channels, n_times))


def test_amplitude_equality_does_not_flag():
    """Only samples strictly larger than the threshold flag an epoch."""
    data = _noise()
    data[0, 1, 10] = 100.0
    data[1, 2, 20] = -100.0
    data[2, 0, 30] = 100.001
    data[3, 0, 40] = -100.5
    store = make_store(data)
    detector = pc.AmplitudeThresholdDetector(100.0, picks="all")
    store, report = detector.apply(store)
    assert_array_equal(report.reject, [False, False, True, True])
    assert_array_equal(store.reject["amplitude"], report.reject)
    assert report.flagged_channels(2)["extreme_value"] == ["EEG 001"]


def test_amplitude_excluded_channels():
    """Excluded channels cannot flag an epoch."""
    data = _noise()
    data[0, 2, 10] = 500.0
    store = make_store(data)
    detector = pc.AmplitudeThresholdDetector(100.0, picks="all",
                                             exclude=["EEG 003"])
    assert not detector.detect(store).reject.any()
    detector = pc.AmplitudeThresholdDetector(100.0, picks=["EEG 003"])
    assert_array_equal(detector.detect(store).reject, [True, False, False, False])


def test_detector_configuration():
    """Invalid parameters are refused before any data is seen."""
    with pytest.raises(pc.ConfigurationError, match="explicitly"):
        pc.AmplitudeThresholdDetector(100.0, picks=None)
    with pytest.raises(pc.ConfigurationError, match="positive"):
        pc.AmplitudeThresholdDetector(-1, picks="all")
    with pytest.raises(pc.ConfigurationError, match="cannot be larger"):
        pc.SequentialArtifactDetector("all", peak_to_peak_window=100,
                                      peak_to_peak_step=200)
    with pytest.raises(pc.ConfigurationError, match="trend_min_r2"):
        pc.SequentialArtifactDetector("all", trend_min_r2=1.5)
    with pytest.raises(pc.ConfigurationError, match="requires"):
        pc.SequentialArtifactDetector("all", flatline_step=10)


def test_detector_input():
    """Empty or non-finite stores are refused."""
    detector = pc.AmplitudeThresholdDetector(100.0, picks="all")
    with pytest.raises(pc.DetectorInputError):
        detector.detect(pc.EpochStore(np.zeros((0, 2, 10)), sfreq=100.0))
    data = _noise()
    data[1, 1, 1] = np.inf
    with pytest.raises(pc.DetectorInputError):
        pc.SequentialArtifactDetector("all").detect(make_store(data))


def test_moving_windows():
    """Windows tile the epoch, with a trailing partial window."""
    assert moving_windows(10, 4, 2) == [(0, 4), (2, 6), (4, 8), (6, 10)]
    assert moving_windows(11, 4, 3) == [(0, 4), (3, 7), (6, 10), (9, 11)]
    assert moving_windows(5, 10, 5) == [(0, 5)]
    with pytest.raises(pc.ConfigurationError):
        moving_windows(10, 2, 4)


def test_peak_to_peak_below_extreme_threshold():
    """An oscillation within ±100 µV is only caught by the peak-to-peak check."""
    data = _noise(n_epochs=3, n_times=100)
    data[1, 0, 40:50:2] = 45.0
    data[1, 0, 41:50:2] = -45.0
    report = pc.SequentialArtifactDetector("all").detect(make_store(data))
    assert_array_equal(report.checks["peak_to_peak"], [False, True, False])
    for check in SEQUENTIAL_CHECKS:
        if check != "peak_to_peak":
            assert not report.checks[check].any(), check
    assert_array_equal(report.reject, [False, True, False])
    assert report.flagged_channels(1)["peak_to_peak"] == ["EEG 001"]


def test_artifact_in_trailing_window():
    """Samples after the last full window are still checked."""
    # 11 samples, 4-sample windows every 3 samples: sample 10 is only in
    # the trailing (9, 11) window
    data = np.zeros((2, 1, 11))
    data[0, 0, 10] = 80.0
    store = make_store(data, sfreq=100.0)
    ptp = flag_peak_to_peak(store.get_data(), 50.0, 40.0, 30.0, 100.0)
    assert_array_equal(ptp.values, [[True], [False]])
    step = flag_step_like(store.get_data(), 50.0, 40.0, 30.0, 100.0)
    assert_array_equal(step.values, [[True], [False]])


def _sequential_store():
    """Five epochs: clean, spike, step, drift and flat."""
    data = _noise(n_epochs=5, n_times=100)
    data[1, 0, 50] = 150.0
    data[2, 1, 60:] += 70.0
    data[3, 2] += np.linspace(0, 90.0, 100)
    data[4, 0] = 3.0
    return make_store(data, sfreq=100.0)


def test_sequential_checks():
    """Each artifact trips its own check."""
    store = _sequential_store()
    detector = pc.SequentialArtifactDetector("all")
    report = detector.detect(store)
    assert list(report.checks) == list(SEQUENTIAL_CHECKS)
    assert_array_equal(report.checks["extreme_value"], [0, 1, 0, 0, 0])
    assert report.checks["step_like"][2]
    assert report.checks["linear_trend"][3]
    assert_array_equal(report.checks["flatline"], [0, 0, 0, 0, 1])
    assert_array_equal(report.reject, [False, True, True, True, True])
    assert report.flagged_channels(4)["flatline"] == ["EEG 001"]
    assert report.n_rejected == 4
    assert report.__repr__()


def test_sequential_reject_is_or_of_checks():
    """The reject vector is the logical OR of the five sub-vectors."""
    report = pc.SequentialArtifactDetector("all").detect(_sequential_store())
    combined = np.zeros(5, dtype=bool)
    for check in SEQUENTIAL_CHECKS:
        combined |= report.checks[check]
    assert_array_equal(report.reject, combined)
    df = report.to_data_frame()
    assert list(df.columns) == ["epoch"] + list(SEQUENTIAL_CHECKS) + ["sequential"]


def test_flat_channel_flagged():
    """A channel constant over an epoch is flat; a single sample is not."""
    data = _noise(n_epochs=2, n_channels=3, n_times=50)
    data[1, 1] = 12.5
    store = make_store(data)
    flags = flag_flatline(store.get_data())
    assert_array_equal(flags.values, [[0, 0, 0], [0, 1, 0]])
    tolerant = flag_flatline(store.get_data(), tolerance=20.0)
    assert tolerant.values.all()
    # a 10 ms window is a single sample at 100 Hz
    windowed = flag_flatline(store.get_data(), window=10.0, sfreq=100.0)
    assert_array_equal(windowed.values, flags.values)


def test_linear_trend():
    """Slope is the change across the epoch; constant channels have R² 0."""
    data = np.zeros((1, 2, 101))
    data[0, 0] = np.linspace(0, 100.0, 101)
    store = make_store(data)
    slope, r2 = linear_trend(store.get_data())
    assert_allclose(slope[0, 0], 100.0 * 101 / 100)
    assert_allclose(r2[0], [1.0, 0.0])
    flags = flag_linear_trend(store.get_data(), 75.0, 0.3)
    assert_array_equal(flags.values, [[True, False]])


def test_extreme_values_returns_channels():
    """Check functions keep the epoch and channel coordinates."""
    data = _noise()
    data[3, 1, 5] = -250.0
    store = make_store(data)
    flags = flag_extreme_values(store.get_data(), 100.0)
    assert flags.dims == ("epoch", "ch")
    assert flags.sel(ch="EEG 002").values.tolist() == [False, False, False, True]


def test_from_config():
    """Detectors can be built from the default config."""
    config = pc.config.Config().load_default()
    amplitude = pc.AmplitudeThresholdDetector.from_config(config)
    sequential = pc.SequentialArtifactDetector.from_config(config)
    assert amplitude.threshold == 100.0
    assert sequential.step_window == 250.0
    assert sequential.__repr__()


def test_simulated_epochs(simulated_fixture):
    """Artifacts of the simulated recording are found by the right detector."""
    raw, artifacts = simulated_fixture
    events = pc.OriginalEventSequence.from_raw(raw)
    store = pc.EpochStore.segment(raw, events, ["11", "22"], -0.2, 0.25)
    amplitude = pc.AmplitudeThresholdDetector(100.0, picks="all").detect(store)
    sequential = pc.SequentialArtifactDetector("all").detect(store)
    assert np.flatnonzero(amplitude.reject).tolist() == [artifacts["spike"]]
    assert np.flatnonzero(sequential.reject).tolist() == sorted(artifacts.values())
    assert sequential.checks["step_like"][artifacts["step"]]
    assert sequential.checks["linear_trend"][artifacts["drift"]]
    assert sequential.checks["flatline"][artifacts["flatline"]]
