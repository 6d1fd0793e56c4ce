import warnings

import numpy as np
from numpy.testing import assert_array_equal
import pandas as pd

import mne
import pytest

import pyconsensus as pc
from pyconsensus.conftest import make_store

TYPES = ["11", "22", "99", "11", "22", "11", "99", "22", "11", "22", "11", "22"]
STIM_IDS = [1, 2, 4, 5, 6, 8, 9, 10, 11, 12]


def _events():
    return pc.OriginalEventSequence(np.arange(1, 13) * 100, TYPES, sfreq=100.0)


def _store(event_ids):
    return make_store(np.zeros((len(event_ids), 2, 10)), event_ids=event_ids)


def test_resolve_after_pruning():
    """12 events, 2 of them responses: surviving epochs keep their trial."""
    store = _store(STIM_IDS).drop([1, 4, 7])
    resolver = pc.TrialIdentityResolver(["11", "22"])
    identity = resolver.resolve(_events(), store)
    assert isinstance(identity, pc.TrialIdentityMap)
    assert identity["trial"].tolist() == [1, 3, 4, 6, 7, 9, 10]
    assert identity["event_id"].tolist() == [1, 4, 5, 8, 9, 11, 12]
    assert identity.resolved.all()
    assert identity.n_original == 10


def test_resolve_without_pruning():
    """Without rejection, trials are 1..N."""
    identity = pc.TrialIdentityResolver(["11", "22"]).resolve(_events(),
                                                             _store(STIM_IDS))
    assert_array_equal(identity.trials, np.arange(1, 11))


def test_resolved_trials_are_injective():
    """Two epochs never share a trial number."""
    store = _store([1, 2, 2, 4])
    with pytest.warns(pc.TrialIdentityUnresolved, match="already anchors"):
        identity = pc.TrialIdentityResolver(["11", "22"]).resolve(_events(),
                                                                 store)
    resolved = identity.loc[identity.resolved, "trial"]
    assert resolved.is_unique
    assert identity["trial"].isna().tolist() == [False, False, True, False]


def test_unresolved_anchor():
    """An epoch anchored on a non-stimulus event has no trial number."""
    store = _store([1, 3, 4])
    with pytest.warns(pc.TrialIdentityUnresolved, match="Could not recover"):
        identity = pc.TrialIdentityResolver(["11", "22"]).resolve(_events(),
                                                                 store)
    assert identity["trial"].isna().tolist() == [False, True, False]
    trials = identity.trials
    assert np.isnan(trials[1])
    assert_array_equal(trials[[0, 2]], [1, 3])


def test_window_events_anchor():
    """Epochs without an anchor use the first stimulus inside their window."""
    window_events = pd.DataFrame(dict(
        epoch=[0, 0, 1],
        event_id=[3, 4, 6],
        type=["99", "11", "11"],
        sample=[300, 400, 600],
    ))
    metadata = pd.DataFrame(dict(event_id=[-1, -1], type=["", ""],
                                 sample=[400, 600]))
    store = pc.EpochStore(np.zeros((2, 2, 10)), sfreq=100.0, metadata=metadata,
                          window_events=window_events)
    resolver = pc.TrialIdentityResolver(["11", "22"])
    anchor_ids, triggers = resolver.anchors(store)
    assert_array_equal(anchor_ids, [4, 6])
    assert list(triggers) == ["11", "11"]
    identity = resolver.resolve(_events(), store)
    assert identity["trial"].tolist() == [3, 5]


def test_type_codes_subset():
    """Only the configured type codes count as trials."""
    store = _store([2, 5, 10])
    identity = pc.TrialIdentityResolver(["22"]).resolve(_events(), store)
    assert identity["trial"].tolist() == [1, 2, 4]
    assert pc.TrialIdentityResolver(22).__repr__()


def test_identity_tsv(tmp_path):
    """Unresolved trials survive a save and load."""
    with pytest.warns(pc.TrialIdentityUnresolved):
        identity = pc.TrialIdentityResolver(["11", "22"]).resolve(
            _events(), _store([1, 3]))
    fname = tmp_path / "trials.tsv"
    identity.save_tsv(fname)
    loaded = pc.TrialIdentityMap.load_tsv(fname)
    assert loaded["trial"].isna().tolist() == [False, True]
    assert loaded["trigger"].tolist() == ["11", "11"]
    assert loaded["event_id"].tolist() == [1, 3]


def test_overlapping_windows():
    """Each epoch keeps its own stimulus when windows hold the previous one."""
    sfreq = 200.0
    info = mne.create_info(["EEG 001", "EEG 002"], sfreq, ch_types="eeg")
    raw = mne.io.RawArray(np.zeros((2, 400)), info, verbose=False)
    # 150 ms apart, closer than the 200 ms before each stimulus
    events = pc.OriginalEventSequence([100, 130, 160, 190], ["11"] * 4,
                                      sfreq=sfreq)
    store = pc.EpochStore.segment(raw, events, ["11"], tmin=-0.2, tmax=0.25)
    assert_array_equal(store.event_ids, [1, 2, 3, 4])
    assert (store.window_events["epoch"] == 1).sum() == 3

    resolver = pc.TrialIdentityResolver(["11"])
    with warnings.catch_warnings():
        warnings.simplefilter("error", pc.TrialIdentityUnresolved)
        identity = resolver.resolve(events, store.drop([0]))
    assert identity["trial"].tolist() == [2, 3, 4]
    assert identity["event_id"].tolist() == [2, 3, 4]


def test_anchor_outside_window():
    """An anchor that is not among its window events is reported."""
    window_events = pd.DataFrame(dict(epoch=[0], event_id=[3], type=["99"],
                                      sample=[300]))
    metadata = pd.DataFrame(dict(event_id=[4], type=["11"], sample=[400]))
    store = pc.EpochStore(np.zeros((1, 2, 10)), sfreq=100.0, metadata=metadata,
                          window_events=window_events)
    with pytest.warns(pc.TrialIdentityUnresolved, match="not inside its window"):
        anchor_ids, triggers = pc.TrialIdentityResolver(["11"]).anchors(store)
    assert_array_equal(anchor_ids, [4])
    assert list(triggers) == ["11"]
