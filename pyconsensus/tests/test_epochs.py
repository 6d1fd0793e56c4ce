import numpy as np
from numpy.testing import assert_array_equal, assert_allclose

import pytest

import pyconsensus as pc
from pyconsensus.conftest import make_store
from pyconsensus.epochs import resolve_picks


def test_store_is_read_only(store_fixture):
    """Samples cannot be edited in place."""
    with pytest.raises(ValueError):
        store_fixture.data[0, 0, 0] = 1.0
    assert store_fixture.__repr__()
    assert store_fixture.n_channels == 4
    assert store_fixture.n_times == 50


@pytest.mark.parametrize("data", [
    np.zeros((4, 50)),
    [np.zeros((2, 10)), np.zeros((3, 10))],
])
def test_invalid_shape(data):
    """Only rectangular (epoch, ch, time) arrays are accepted."""
    with pytest.raises(pc.DetectorInputError):
        pc.EpochStore(data, sfreq=100.0)


def test_check():
    """Empty stores and non-finite samples cannot be processed."""
    with pytest.raises(pc.DetectorInputError, match="no epochs"):
        pc.EpochStore(np.zeros((0, 2, 10)), sfreq=100.0).check()
    data = np.zeros((2, 2, 10))
    data[1, 0, 3] = np.nan
    with pytest.raises(pc.DetectorInputError, match="non-finite"):
        pc.EpochStore(data, sfreq=100.0).check()


def test_drop_all_false_returns_same_store(store_fixture):
    """Dropping nothing is a no-op."""
    assert store_fixture.drop(np.zeros(6, dtype=bool)) is store_fixture
    assert store_fixture.drop([]) is store_fixture


def test_drop(store_fixture):
    """Dropped epochs disappear with their metadata and reject vectors."""
    store = store_fixture.with_reject("amplitude", [0, 1, 0, 0, 1, 0])
    pruned = store.drop([1, 4])
    assert len(pruned) == 4
    assert_array_equal(pruned.event_ids, [1, 3, 4, 6])
    assert_array_equal(pruned.data, store.data[[0, 2, 3, 5]])
    assert not pruned.reject["amplitude"].any()
    # the source store is untouched
    assert len(store) == 6
    with pytest.raises(ValueError, match="Boolean drop mask"):
        store.drop(np.zeros(3, dtype=bool))


def test_with_reject_does_not_modify(store_fixture):
    """Detectors return a new store."""
    store = store_fixture.with_reject("sequential", np.ones(6, dtype=bool))
    assert "sequential" not in store_fixture.reject
    assert store.reject.get_flagged() == list(range(6))


def test_analysis_tensor(store_fixture):
    """The export tensor is channels x samples x epochs."""
    tensor = store_fixture.analysis_tensor()
    assert tensor.shape == (4, 50, 6)
    assert_array_equal(tensor[:, :, 2], store_fixture.data[2])


def test_resolve_picks():
    """Channel sets must be explicit."""
    ch_names = ["Fz", "Cz", "Pz", "HEOG"]
    assert resolve_picks(ch_names, "all", exclude=["HEOG"]) == ["Fz", "Cz", "Pz"]
    assert resolve_picks(ch_names, ["Cz", "Pz"]) == ["Cz", "Pz"]
    with pytest.raises(pc.ConfigurationError, match="Unknown"):
        resolve_picks(ch_names, ["Oz"])
    with pytest.raises(pc.ConfigurationError, match="must be 'all'"):
        resolve_picks(ch_names, "eeg")
    with pytest.raises(pc.ConfigurationError, match="empty"):
        resolve_picks(ch_names, ["Cz"], exclude=["Cz"])


def test_pick(store_fixture):
    """Picking channels keeps epochs and reject vectors."""
    store = store_fixture.with_reject("amplitude", [1, 0, 0, 0, 0, 0])
    picked = store.pick(["EEG 003", "EEG 001"])
    assert picked.ch_names == ["EEG 003", "EEG 001"]
    assert_array_equal(picked.data[:, 1], store.data[:, 0])
    assert picked.reject.get_flagged() == [0]
    assert store.pick("all", exclude=["EEG 004"]).n_channels == 3


def test_segment(simulated_fixture):
    """Segmenting the simulated recording yields one epoch per stimulus."""
    raw, _ = simulated_fixture
    events = pc.OriginalEventSequence.from_raw(raw)
    store = pc.EpochStore.segment(raw, events, ["11", "22"], tmin=-0.2,
                                  tmax=0.25)
    assert len(store) == 10
    assert store.n_channels == 16
    # 0.45 s at 200 Hz, end excluded
    assert store.n_times == 90
    assert_allclose(store.times[0], -0.2)
    assert_array_equal(store.event_ids, [1, 2, 4, 5, 6, 8, 9, 10, 11, 12])
    assert set(store.window_events["epoch"]) == set(range(10))


def test_mne_round_trip(store_fixture):
    """Converting to MNE keeps the samples (in volts) and the metadata."""
    epochs = store_fixture.to_mne()
    assert_allclose(epochs.get_data() * 1e6, store_fixture.data)
    store = pc.EpochStore.from_mne(epochs)
    assert_array_equal(store.event_ids, store_fixture.event_ids)
    assert_allclose(store.data, store_fixture.data)


def test_make_store_metadata():
    """Stores built without metadata have no anchoring events."""
    store = pc.EpochStore(np.zeros((3, 2, 5)), sfreq=10.0)
    assert not store.has_event_ids
    assert make_store(np.zeros((3, 2, 5))).has_event_ids
