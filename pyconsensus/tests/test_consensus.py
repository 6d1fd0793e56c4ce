import numpy as np
from numpy.testing import assert_array_equal
import pandas as pd

import pytest

import pyconsensus as pc
from pyconsensus.conftest import make_store
from pyconsensus.consensus import merge_vectors


def _stores(reject_a, reject_b, event_ids=None):
    rng = np.random.RandomState(0)
    n_epochs = len(reject_a)
    data = rng.uniform(-5, 5, size=(n_epochs, 3, 20))
    a = make_store(data, event_ids=event_ids).with_reject("amplitude", reject_a)
    b = make_store(data, event_ids=event_ids).with_reject("sequential", reject_b)
    return a, b


def test_merge_vectors():
    """The union and its statistics."""
    combined, stats = merge_vectors([1, 1, 0, 0, 0], [0, 1, 1, 0, 0])
    assert_array_equal(combined, [True, True, True, False, False])
    assert stats == dict(n_a=2, n_b=2, overlap=1, union=3)
    with pytest.raises(pc.TrialCountMismatchError):
        merge_vectors([0, 1], [0, 1, 0])


@pytest.mark.parametrize("seed", range(5))
def test_merge_properties(seed):
    """Commutative, idempotent and bounded by the two inputs."""
    rng = np.random.RandomState(seed)
    a = rng.rand(30) < 0.3
    b = rng.rand(30) < 0.3
    ab, stats = merge_vectors(a, b)
    ba, _ = merge_vectors(b, a)
    assert_array_equal(ab, ba)
    aa, _ = merge_vectors(a, a)
    assert_array_equal(aa, a)
    assert max(stats["n_a"], stats["n_b"]) <= stats["union"]
    assert stats["union"] <= stats["n_a"] + stats["n_b"]
    assert stats["union"] == stats["n_a"] + stats["n_b"] - stats["overlap"]


def test_merger_prunes_union():
    """Epochs flagged by either pipeline are removed from the base store."""
    a, b = _stores([0, 1, 0, 0, 1, 0], [0, 1, 1, 0, 0, 0])
    result = pc.ConsensusMerger().merge(a, b)
    assert_array_equal(result.dropped_indices, [1, 2, 4])
    assert result.n_final == 3
    assert_array_equal(result.store.event_ids, [1, 4, 6])
    assert (result.n_a, result.n_b, result.overlap, result.union) == (2, 2, 1, 3)
    assert result.rejection_rate == 0.5
    assert result.__repr__()


def test_merger_is_commutative():
    """Swapping the stores changes nothing but the base."""
    a, b = _stores([0, 1, 0, 0, 1, 0], [0, 1, 1, 0, 0, 0])
    ab = pc.ConsensusMerger().merge(a, b)
    ba = pc.ConsensusMerger().merge(b, a)
    assert_array_equal(ab.combined, ba.combined)
    assert_array_equal(ab.store.event_ids, ba.store.event_ids)
    assert ab.union == ba.union


def test_merger_all_false_round_trip():
    """Nothing flagged: the base store is returned as is."""
    a, b = _stores([0, 0, 0, 0], [0, 0, 0, 0])
    result = pc.ConsensusMerger().merge(a, b)
    assert result.store is a
    assert result.n_final == 4
    assert len(result.dropped_indices) == 0


def test_merger_count_mismatch():
    """Stores with different numbers of epochs are never merged."""
    a, _ = _stores([0, 1, 0], [0, 0, 0])
    _, b = _stores([0, 0], [0, 1])
    with pytest.raises(pc.TrialCountMismatchError, match="different number"):
        pc.ConsensusMerger().merge(a, b)
    assert len(a) == 3


def test_merger_identity_mismatch():
    """Stores anchored on different events are never merged."""
    a, _ = _stores([0, 1, 0], [0, 0, 0], event_ids=[1, 2, 4])
    _, b = _stores([0, 0, 0], [0, 0, 0], event_ids=[1, 2, 5])
    with pytest.raises(pc.TrialCountMismatchError, match="same trials"):
        pc.ConsensusMerger().merge(a, b)


def test_merger_aligns_on_event_ids():
    """Epochs are matched by their anchoring event, not their position."""
    a, _ = _stores([0, 0, 0, 0], [0, 0, 0, 0], event_ids=[1, 2, 4, 5])
    _, b = _stores([0, 0, 0, 0], [1, 0, 0, 0], event_ids=[5, 4, 2, 1])
    result = pc.ConsensusMerger().merge(a, b)
    assert_array_equal(result.combined, [False, False, False, True])
    assert_array_equal(result.store.event_ids, [1, 2, 4])
    result = pc.ConsensusMerger(base="b").merge(a, b)
    assert_array_equal(result.store.event_ids, [4, 2, 1])


def test_merger_named_vectors():
    """Only the named reject vectors are merged."""
    a, b = _stores([0, 1, 0], [0, 0, 1])
    a = a.with_reject("other", [1, 0, 0])
    merger = pc.ConsensusMerger(reject_a="amplitude", reject_b="sequential")
    assert_array_equal(merger.merge(a, b).combined, [False, True, True])
    merger = pc.ConsensusMerger(reject_a="missing", reject_b="sequential")
    assert_array_equal(merger.merge(a, b).combined, [False, False, True])
    with pytest.raises(pc.ConfigurationError):
        pc.ConsensusMerger(base="c")


def test_result_tsv(tmp_path):
    """The merge statistics are saved for QC."""
    a, b = _stores([0, 1, 0, 0], [0, 0, 0, 1])
    result = pc.ConsensusMerger().merge(a, b)
    fname = tmp_path / "consensus.tsv"
    result.save_tsv(fname)
    df = pd.read_csv(fname, sep="\t")
    assert df.loc[0, "union"] == 2
    assert df.loc[0, "n_final"] == 2
    assert df.loc[0, "dropped_indices"] == "1,3"
