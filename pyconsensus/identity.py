# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#
# License: MIT

"""Recover the original trial number of the epochs that survived."""

import numpy as np
import pandas as pd

from mne.utils import logger, warn

from .errors import TrialIdentityUnresolved
from .events import _as_codes


class TrialIdentityMap(pd.DataFrame):
    """Original trial number of every epoch of a pruned store.

    Columns are ``epoch`` (position in the pruned store), ``event_id``
    (anchoring event), ``trigger`` (its type code) and ``trial`` (1-based
    position among the original stimulus events, ``<NA>`` when unresolved).
    """

    _metadata = ["n_original"]

    @property
    def _constructor(self):
        return TrialIdentityMap

    @property
    def resolved(self):
        """Boolean mask of the epochs with a trial number."""
        return self["trial"].notna().to_numpy()

    @property
    def trials(self):
        """Trial numbers as floats, NaN for unresolved epochs."""
        return self["trial"].astype("Float64").to_numpy(dtype=float,
                                                        na_value=np.nan)

    def save_tsv(self, fname):
        """Save the identity map.

        Parameters
        ----------
        fname : str | pathlib.Path
            The output filename.
        """
        self.to_csv(fname, sep="\t", index=False, na_rep="n/a")

    @classmethod
    def load_tsv(cls, fname):
        """Load an identity map saved with :meth:`save_tsv`."""
        df = pd.read_csv(fname, sep="\t", na_values=["n/a"],
                         dtype={"trigger": str})
        df["event_id"] = df["event_id"].astype("Int64")
        df["trial"] = df["trial"].astype("Int64")
        return cls(df)


class TrialIdentityResolver:
    """Map each surviving epoch to its position among the original trials.

    Parameters
    ----------
    type_codes : list of str
        Stimulus type codes. Only events of these types are trials.
    """

    def __init__(self, type_codes):
        self.type_codes = _as_codes(type_codes)

    def __repr__(self):
        return f"<TrialIdentityResolver | type codes {list(self.type_codes)}>"

    def anchors(self, store):
        """Return the anchoring ``event_id`` and type code of every epoch.

        The anchor is the event the epoch was segmented around, as recorded
        in the store metadata. Epochs without one (``event_id`` of -1) fall
        back on the first stimulus event inside their window. An anchor
        missing from the events of its own window is kept, with a
        :class:`~pyconsensus.errors.TrialIdentityUnresolved` warning.
        """
        anchor_ids = store.metadata["event_id"].to_numpy(dtype=np.int64).copy()
        triggers = store.metadata["type"].astype(str).to_numpy(dtype=object).copy()
        window_events = store.window_events
        if not len(window_events):
            return anchor_ids, triggers

        epochs = window_events["epoch"].to_numpy(dtype=int)
        listed = set(zip(epochs, window_events["event_id"].to_numpy(dtype=np.int64)))
        for epoch in np.flatnonzero(anchor_ids >= 0):
            if epoch in epochs and (epoch, anchor_ids[epoch]) not in listed:
                warn(f"Epoch {epoch} is anchored on event {anchor_ids[epoch]}, "
                     "which is not inside its window.", TrialIdentityUnresolved)

        stim = window_events[window_events["type"].astype(str).isin(self.type_codes)]
        first = stim.sort_values(["epoch", "sample"]).groupby("epoch").first()
        positions = first.index.to_numpy(dtype=int)
        fallback = anchor_ids[positions] < 0
        positions = positions[fallback]
        anchor_ids[positions] = first["event_id"].to_numpy(dtype=np.int64)[fallback]
        triggers[positions] = first["type"].astype(str).to_numpy()[fallback]
        return anchor_ids, triggers

    def resolve(self, events, store):
        """Build the identity map of a pruned store.

        Parameters
        ----------
        events : OriginalEventSequence
            The full original event table of the recording.
        store : EpochStore
            The store left after the consensus merge.

        Returns
        -------
        TrialIdentityMap
        """
        stim = events.filter(self.type_codes)
        trial_of = dict(zip(stim["event_id"].to_numpy(), stim["trial"].to_numpy()))
        anchor_ids, triggers = self.anchors(store)

        trials = pd.array([pd.NA] * len(store), dtype="Int64")
        seen = set()
        for epoch, event_id in enumerate(anchor_ids):
            trial = trial_of.get(int(event_id))
            if trial is None:
                warn(f"Could not recover original trial number for epoch "
                     f"{epoch} (event_id {event_id}).", TrialIdentityUnresolved)
                continue
            if trial in seen:
                warn(f"Epoch {epoch} is anchored on event {event_id}, which "
                     "already anchors another epoch.", TrialIdentityUnresolved)
                continue
            seen.add(trial)
            trials[epoch] = trial

        identity = TrialIdentityMap(
            dict(
                epoch=np.arange(len(store)),
                event_id=pd.array(anchor_ids, dtype="Int64"),
                trigger=[str(t) for t in triggers],
                trial=trials,
            )
        )
        identity.n_original = len(stim)
        resolved = identity.loc[identity.resolved, "trial"]
        if len(resolved):
            logger.info(f"  Recovered trial numbers: {resolved.min()} to "
                        f"{resolved.max()} (of {len(stim)} original)")
        logger.info(f"  Original trials retained: {len(resolved)} / {len(stim)}")
        return identity
