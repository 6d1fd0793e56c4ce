# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#
# License: MIT

"""Merge the reject decisions of two pipelines and prune the epochs."""

import numpy as np
import pandas as pd

from mne.utils import logger

from .errors import ConfigurationError, TrialCountMismatchError
from .utils import _report_consensus


def merge_vectors(reject_a, reject_b):
    """Union two reject vectors.

    Parameters
    ----------
    reject_a, reject_b : array-like of bool
        Reject vectors of equal length.

    Returns
    -------
    combined : numpy.ndarray
        ``reject_a | reject_b``.
    stats : dict
        ``n_a``, ``n_b``, ``overlap`` and ``union`` counts.
    """
    reject_a = np.asarray(reject_a, dtype=bool)
    reject_b = np.asarray(reject_b, dtype=bool)
    if reject_a.shape != reject_b.shape:
        raise TrialCountMismatchError(
            f"Both datasets have a different number of trials: "
            f"{reject_a.size} and {reject_b.size}."
        )
    combined = reject_a | reject_b
    stats = dict(
        n_a=int(reject_a.sum()),
        n_b=int(reject_b.sum()),
        overlap=int((reject_a & reject_b).sum()),
        union=int(combined.sum()),
    )
    return combined, stats


def _align(a, b):
    """Return the positions of ``b``'s epochs in ``a``'s epoch order."""
    if not (a.has_event_ids and b.has_event_ids):
        return np.arange(len(b))
    ids_a, ids_b = a.event_ids, b.event_ids
    if len(np.unique(ids_a)) != len(ids_a) or len(np.unique(ids_b)) != len(ids_b):
        raise TrialCountMismatchError("An anchoring event is shared by two epochs.")
    if set(ids_a) != set(ids_b):
        only_a = sorted(set(ids_a) - set(ids_b))
        only_b = sorted(set(ids_b) - set(ids_a))
        raise TrialCountMismatchError(
            "Both datasets do not describe the same trials. Events only in "
            f"the first: {only_a}, only in the second: {only_b}."
        )
    position_in_b = {event_id: pos for pos, event_id in enumerate(ids_b)}
    return np.array([position_in_b[event_id] for event_id in ids_a])


class ConsensusResult:
    """Outcome of a consensus merge.

    Attributes
    ----------
    combined : numpy.ndarray
        The unioned reject vector, in the epoch order of the first store.
    n_a, n_b : int
        Number of epochs rejected by each pipeline.
    overlap : int
        Number of epochs rejected by both pipelines.
    union : int
        Number of epochs rejected by at least one pipeline.
    n_initial : int
        Number of epochs before pruning.
    dropped_indices : numpy.ndarray
        Positions, in the base store, of the removed epochs.
    store : EpochStore
        The pruned base store.
    """

    def __init__(self, combined, stats, dropped_indices, store, base):
        self.combined = combined
        self.n_a = stats["n_a"]
        self.n_b = stats["n_b"]
        self.overlap = stats["overlap"]
        self.union = stats["union"]
        self.n_initial = len(combined)
        self.dropped_indices = dropped_indices
        self.store = store
        self.base = base

    def __repr__(self):
        """Return a summary of the ConsensusResult object."""
        return (
            f"ConsensusResult: |\n"
            f"  n_a: {self.n_a}\n"
            f"  n_b: {self.n_b}\n"
            f"  overlap: {self.overlap}\n"
            f"  union: {self.union} / {self.n_initial}\n"
            f"  n_final: {self.n_final}\n"
        )

    @property
    def n_final(self):
        return len(self.store)

    @property
    def rejection_rate(self):
        if not self.n_initial:
            return 0.0
        return self.union / self.n_initial

    @property
    def stats(self):
        """Return the consensus statistics as a dict."""
        return dict(
            n_initial=self.n_initial,
            n_a=self.n_a,
            n_b=self.n_b,
            overlap=self.overlap,
            union=self.union,
            n_final=self.n_final,
            rejection_rate=self.rejection_rate,
        )

    def to_data_frame(self):
        """Return the statistics as a one-row DataFrame."""
        return pd.DataFrame([self.stats])

    def save_tsv(self, fname):
        """Save the statistics and the removed epochs to a tsv file."""
        df = self.to_data_frame()
        df["base"] = self.base
        df["dropped_indices"] = ",".join(str(idx) for idx in self.dropped_indices)
        df.to_csv(fname, sep="\t", index=False)


class ConsensusMerger:
    """Union the reject decisions of two epoch stores of the same recording.

    Parameters
    ----------
    base : str
        ``"a"`` or ``"b"``: which store is pruned and returned. Its channel
        layout and metadata are the ones exported.
    reject_a : str | None
        Name of the reject vector to read in the first store. ``None`` uses
        the OR of all its vectors.
    reject_b : str | None
        Same as ``reject_a`` for the second store.
    """

    def __init__(self, base="a", reject_a=None, reject_b=None):
        if base not in ("a", "b"):
            raise ConfigurationError(f"base must be 'a' or 'b'. Got {base}")
        self.base = base
        self.reject_a = reject_a
        self.reject_b = reject_b

    def __repr__(self):
        return f"<ConsensusMerger | base={self.base}>"

    @staticmethod
    def _get_reject(store, name):
        if name is None:
            return store.reject.combined()
        if name not in store.reject:
            logger.info(f"  No '{name}' rejection markers found")
            return np.zeros(len(store), dtype=bool)
        return store.reject[name]

    def merge(self, a, b):
        """Merge two stores.

        Parameters
        ----------
        a, b : EpochStore
            Two stores segmented from the same recording with the same
            stimulus type codes.

        Returns
        -------
        ConsensusResult

        Raises
        ------
        TrialCountMismatchError
            If the stores do not have the same number of epochs, or do not
            describe the same anchoring events. Nothing is pruned in that
            case.
        """
        if len(a) != len(b):
            raise TrialCountMismatchError(
                f"Both datasets have a different number of trials: {len(a)} "
                f"and {len(b)}."
            )
        order = _align(a, b)
        reject_a = self._get_reject(a, self.reject_a)
        reject_b = self._get_reject(b, self.reject_b)[order]
        combined, stats = merge_vectors(reject_a, reject_b)

        if self.base == "a":
            base_store, base_combined = a, combined
        else:
            base_combined = np.zeros(len(b), dtype=bool)
            base_combined[order] = combined
            base_store = b

        dropped = np.flatnonzero(base_combined)
        if len(dropped):
            logger.info(f"  Rejecting {len(dropped)} marked epochs...")
        else:
            logger.info("  No epochs marked for rejection")
        pruned = base_store.drop(base_combined)
        result = ConsensusResult(combined, stats, dropped, pruned, self.base)
        _report_consensus(result)
        return result
