# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#
# License: MIT

"""The table of every stimulus event as originally recorded."""

import numpy as np
import pandas as pd

import mne
from mne.utils import logger

from .errors import ConfigurationError


def _as_codes(type_codes):
    """Normalize stimulus type codes to a tuple of strings."""
    if isinstance(type_codes, (str, int, np.integer)):
        type_codes = [type_codes]
    codes = tuple(str(code) for code in type_codes)
    if not codes:
        raise ConfigurationError("At least one stimulus type code is required.")
    return codes


def _read_only(values, dtype=None):
    array = np.array(values, dtype=dtype)
    array.setflags(write=False)
    return array


class OriginalEventSequence:
    """Append-only table of every event marker of a recording.

    The position of a stimulus event in this table (restricted to the
    stimulus type codes) is the canonical trial number of the experiment.
    The table is never re-indexed: each event keeps its ``event_id`` for the
    lifetime of the recording, whatever is later removed downstream.

    Parameters
    ----------
    samples : array-like of int
        Sample index of each event, in chronological order.
    types : array-like
        Type code of each event. Codes are stored as strings.
    sfreq : float | None
        Sampling frequency of the recording the samples refer to.
    event_ids : array-like of int | None
        Stable identifiers. Defaults to the 1-based position of each event.
    """

    def __init__(self, samples, types, sfreq=None, event_ids=None):
        samples = np.asarray(samples, dtype=np.int64).ravel()
        types = [str(t) for t in np.asarray(types, dtype=object).ravel()]
        if len(samples) != len(types):
            raise ValueError(
                f"Got {len(samples)} event samples but {len(types)} event types."
            )
        if np.any(np.diff(samples) < 0):
            raise ValueError("Events must be given in chronological order.")
        if event_ids is None:
            event_ids = np.arange(1, len(samples) + 1)
        event_ids = np.asarray(event_ids, dtype=np.int64).ravel()
        if len(event_ids) != len(samples):
            raise ValueError("There must be exactly one event_id per event.")
        if len(np.unique(event_ids)) != len(event_ids):
            raise ValueError("event_id values must be unique.")

        self._samples = _read_only(samples)
        self._types = _read_only(types, dtype=object)
        self._event_ids = _read_only(event_ids)
        self.sfreq = sfreq

    @classmethod
    def from_raw(cls, raw, stim_channel=None):
        """Build the event table of an :class:`mne.io.Raw` object.

        Parameters
        ----------
        raw : mne.io.Raw
            The continuous recording.
        stim_channel : str | None
            Name of the trigger channel. When ``None`` and the recording has
            no stim channel, the annotations are used instead and their
            descriptions become the type codes.

        Returns
        -------
        OriginalEventSequence
        """
        has_stim = "stim" in raw.get_channel_types(unique=True)
        if stim_channel is not None or has_stim:
            events = mne.find_events(raw, stim_channel=stim_channel,
                                     shortest_event=1, verbose=False)
            types = events[:, 2].astype(str)
        else:
            events, event_id = mne.events_from_annotations(raw, verbose=False)
            code_to_desc = {code: desc for desc, code in event_id.items()}
            types = [code_to_desc[code] for code in events[:, 2]]
        # find_events and events_from_annotations include first_samp
        samples = events[:, 0] - raw.first_samp
        logger.info(f"📋 CONSENSUS: {len(samples)} event(s) in the original "
                    "recording.")
        return cls(samples, types, sfreq=raw.info["sfreq"])

    def __len__(self):
        return len(self._event_ids)

    def __repr__(self):
        """Return a summary of the event table."""
        codes = sorted(set(self._types))
        return (f"<OriginalEventSequence | {len(self)} events, "
                f"type codes: {codes}>")

    def __eq__(self, other):
        if not isinstance(other, OriginalEventSequence):
            return NotImplemented
        return (np.array_equal(self._event_ids, other._event_ids)
                and np.array_equal(self._samples, other._samples)
                and list(self._types) == list(other._types))

    @property
    def event_ids(self):
        return self._event_ids

    @property
    def samples(self):
        return self._samples

    @property
    def types(self):
        return self._types

    def append(self, sample, event_type):
        """Return a new sequence with one more event at the end.

        The new event receives ``max(event_id) + 1``; existing identifiers
        are left untouched.
        """
        if len(self) and sample < self._samples[-1]:
            raise ValueError("Appended events must not precede the last event.")
        next_id = int(self._event_ids.max()) + 1 if len(self) else 1
        return OriginalEventSequence(
            np.append(self._samples, sample),
            list(self._types) + [str(event_type)],
            sfreq=self.sfreq,
            event_ids=np.append(self._event_ids, next_id),
        )

    def to_data_frame(self):
        """Return a copy of the table as a DataFrame."""
        df = pd.DataFrame(
            dict(
                event_id=np.array(self._event_ids),
                sample=np.array(self._samples),
                type=list(self._types),
            )
        )
        if self.sfreq:
            df["onset"] = df["sample"] / self.sfreq
        return df

    def is_stimulus(self, type_codes):
        """Return a boolean mask of the events matching ``type_codes``."""
        codes = _as_codes(type_codes)
        return np.isin(np.array(self._types, dtype=str), codes)

    def filter(self, type_codes):
        """Return the stimulus events, numbered 1..N in chronological order.

        Parameters
        ----------
        type_codes : list of str
            Stimulus type codes defining what a trial is.

        Returns
        -------
        pandas.DataFrame
            Columns ``trial``, ``event_id``, ``sample`` and ``type``
            (plus ``onset`` when ``sfreq`` is known).
        """
        df = self.to_data_frame()[self.is_stimulus(type_codes)]
        df = df.reset_index(drop=True)
        df.insert(0, "trial", np.arange(1, len(df) + 1))
        return df

    def to_mne_events(self, type_codes):
        """Return an MNE events array for the stimuli.

        Returns
        -------
        events : numpy.ndarray
            Shape ``(n_stimuli, 3)``. The third column holds integer codes
            mapped from the (string) type codes in the order they are given.
        event_id : dict
            Mapping from type code to integer code.
        anchor_ids : numpy.ndarray
            The ``event_id`` of each row of ``events``.
        """
        codes = _as_codes(type_codes)
        event_id = {code: i + 1 for i, code in enumerate(codes)}
        stim = self.filter(codes)
        events = np.column_stack(
            [
                stim["sample"].to_numpy(dtype=np.int64),
                np.zeros(len(stim), dtype=np.int64),
                stim["type"].map(event_id).to_numpy(dtype=np.int64),
            ]
        )
        return events.reshape(-1, 3), event_id, stim["event_id"].to_numpy()
