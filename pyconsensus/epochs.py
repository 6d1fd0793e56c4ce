# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#          James Desjardins <jim.a.desjardins@gmail.com>
#          Tyler Collins <collins.tyler.k@gmail.com>
#
# License: MIT

"""In-memory epoched datasets carrying per-detector reject vectors."""

import numpy as np
import pandas as pd
import xarray as xr

import mne
from mne.utils import logger

from .errors import ConfigurationError, DetectorInputError
from .events import _as_codes
from .flagging import RejectVectors

METADATA_COLUMNS = ["event_id", "type", "sample"]


def epochs_to_xr(epochs):
    """Create an Xarray DataArray from an instance of mne.Epochs.

    Parameters
    ----------
    epochs : mne.Epochs
        an instance of mne.Epochs

    Returns
    -------
    xarray.DataArray
        an instance of xarray.DataArray, with dimensions ``'epoch'``,
        ``'ch'`` (channels) and ``'time'``, in microvolts.
    """
    data = epochs.get_data(units="uV")  # n_epochs, n_channels, n_times
    return xr.DataArray(
        data,
        dims=("epoch", "ch", "time"),
        coords={
            "epoch": np.arange(data.shape[0]),
            "ch": epochs.ch_names,
            "time": epochs.times,
        },
    )


def resolve_picks(ch_names, picks, exclude=()):
    """Return the channel names selected by an explicit channel set.

    Parameters
    ----------
    ch_names : list of str
        The channels available.
    picks : str | list of str
        ``"all"`` or an explicit list of channel names.
    exclude : list of str
        Channels removed from the selection, e.g. auxiliary channels.

    Returns
    -------
    list of str
    """
    if isinstance(picks, str):
        if picks != "all":
            raise ConfigurationError(
                f"picks must be 'all' or a list of channel names. Got '{picks}'."
            )
        picks = list(ch_names)
    unknown = [ch for ch in list(picks) + list(exclude) if ch not in ch_names]
    if unknown:
        raise ConfigurationError(f"Unknown channel(s): {unknown}")
    selected = [ch for ch in picks if ch not in exclude]
    if not selected:
        raise ConfigurationError("The channel selection is empty.")
    return selected


class EpochStore:
    """An ordered collection of epochs sharing channels, rate and window.

    Parameters
    ----------
    data : xarray.DataArray | numpy.ndarray
        Samples in microvolts, of shape ``(n_epochs, n_channels, n_times)``.
    ch_names : list of str
        The channel names.
    sfreq : float
        Sampling frequency in Hz.
    tmin : float
        Time of the first sample of each epoch, relative to its anchoring
        event, in seconds.
    metadata : pandas.DataFrame | None
        One row per epoch, with the anchoring event's ``event_id``, ``type``
        and ``sample``. Only ``event_id`` is stable across stores describing
        the same recording.
    window_events : pandas.DataFrame | None
        Every event found inside each epoch window, with columns ``epoch``,
        ``event_id``, ``type`` and ``sample``.
    reject : dict | RejectVectors | None
        Reject vectors keyed by detector name.

    Notes
    -----
    Detectors never modify a store; they return a copy with a new reject
    vector. Epochs only disappear through :meth:`drop`.
    """

    def __init__(self, data, ch_names=None, sfreq=None, tmin=0.0, metadata=None,
                 window_events=None, reject=None):
        if isinstance(data, xr.DataArray):
            if ch_names is None:
                ch_names = [str(ch) for ch in data.coords["ch"].values]
            data = data.values
        try:
            data = np.array(data, dtype=float)
        except ValueError as err:
            raise DetectorInputError(f"Epoch data is not rectangular: {err}") from err
        if data.ndim != 3:
            raise DetectorInputError(
                "Epoch data must have shape (n_epochs, n_channels, n_times). "
                f"Got {data.ndim} dimension(s)."
            )
        if sfreq is None or sfreq <= 0:
            raise DetectorInputError(f"sfreq must be positive. Got {sfreq}")
        n_epochs, n_channels, n_times = data.shape
        if ch_names is None:
            ch_names = [f"EEG {ii + 1:03}" for ii in range(n_channels)]
        ch_names = list(ch_names)
        if len(ch_names) != n_channels:
            raise DetectorInputError(
                f"Got {len(ch_names)} channel names for {n_channels} channels."
            )

        if metadata is None:
            metadata = pd.DataFrame(
                dict(event_id=np.full(n_epochs, -1), type=[""] * n_epochs,
                     sample=np.full(n_epochs, -1))
            )
        metadata = metadata.reset_index(drop=True)
        if len(metadata) != n_epochs:
            raise DetectorInputError(
                f"Got metadata for {len(metadata)} epochs but data for "
                f"{n_epochs} epochs."
            )
        if "event_id" not in metadata:
            raise DetectorInputError("metadata must have an 'event_id' column.")
        metadata = metadata.copy()
        if "type" not in metadata:
            metadata["type"] = ""
        metadata["type"] = metadata["type"].astype(str)

        if window_events is None:
            window_events = pd.DataFrame(columns=["epoch"] + METADATA_COLUMNS)

        self._data = data
        self._data.setflags(write=False)
        self.ch_names = ch_names
        self.sfreq = float(sfreq)
        self.tmin = float(tmin)
        self.metadata = metadata
        self.window_events = window_events.reset_index(drop=True)
        if isinstance(reject, RejectVectors):
            reject = reject.copy()
        else:
            reject = RejectVectors(n_epochs, reject or {})
        if reject.n_epochs != n_epochs:
            raise DetectorInputError(
                f"Reject vectors describe {reject.n_epochs} epochs but the "
                f"store has {n_epochs} epochs."
            )
        self.reject = reject

    @classmethod
    def from_mne(cls, epochs, window_events=None):
        """Create a store from an instance of :class:`mne.Epochs`.

        The anchoring event of each epoch is read from
        ``epochs.metadata["event_id"]`` when present.
        """
        metadata = epochs.metadata
        if metadata is None or "event_id" not in metadata:
            metadata = pd.DataFrame(dict(event_id=np.full(len(epochs), -1)))
        metadata = metadata.copy().reset_index(drop=True)
        code_to_type = {code: desc for desc, code in epochs.event_id.items()}
        if "type" not in metadata:
            metadata["type"] = [code_to_type.get(code, str(code))
                                for code in epochs.events[:, 2]]
        if "sample" not in metadata:
            metadata["sample"] = epochs.events[:, 0]
        return cls(
            epochs_to_xr(epochs),
            sfreq=epochs.info["sfreq"],
            tmin=epochs.tmin,
            metadata=metadata,
            window_events=window_events,
        )

    @classmethod
    def segment(cls, raw, events, type_codes, tmin, tmax, baseline=(None, 0),
                picks="all", exclude=()):
        """Segment continuous data around the stimulus events.

        Parameters
        ----------
        raw : mne.io.Raw
            The continuous, preprocessed recording.
        events : OriginalEventSequence
            The full event table of the recording.
        type_codes : list of str
            Stimulus type codes to time-lock on.
        tmin, tmax : float
            Epoch limits in seconds, relative to the stimulus.
        baseline : tuple | None
            Baseline interval, passed to :class:`mne.Epochs`.
        picks : str | list of str
            ``"all"`` or an explicit list of channel names to keep.
        exclude : list of str
            Channels to leave out.

        Returns
        -------
        EpochStore
        """
        codes = _as_codes(type_codes)
        mne_events, event_id, anchor_ids = events.to_mne_events(codes)
        if not len(mne_events):
            raise DetectorInputError(
                f"No event matching the type codes {list(codes)} was found."
            )
        present = {code: eid for code, eid in event_id.items()
                   if eid in mne_events[:, 2]}
        stim = events.filter(codes)
        metadata = pd.DataFrame(
            dict(event_id=anchor_ids, type=stim["type"].to_numpy(),
                 sample=stim["sample"].to_numpy())
        )
        # Events sample indices are relative to the first sample of raw
        mne_events = mne_events.copy()
        mne_events[:, 0] += raw.first_samp
        data_chs = [raw.ch_names[idx] for idx in mne.pick_types(
            raw.info, eeg=True, eog=True, ecg=True, emg=True, exclude=[])]
        ch_names = resolve_picks(data_chs, picks, exclude)
        if baseline is not None:
            baseline = tuple(baseline)

        # MNE epoching is end-inclusive, which adds one sample to the
        # requested window. This removes that extra sample.
        sfreq = raw.info["sfreq"]
        epochs = mne.Epochs(
            raw,
            events=mne_events,
            event_id=present,
            tmin=tmin,
            tmax=tmax - 1 / sfreq,
            baseline=baseline,
            picks=ch_names,
            metadata=metadata,
            reject_by_annotation=False,
            preload=True,
            verbose=False,
        )
        kept = epochs.selection
        if len(kept) != len(mne_events):
            logger.info(f"🧹 CONSENSUS: {len(mne_events) - len(kept)} epoch(s) "
                        "fall outside of the recording and were not created.")
        window_events = _find_window_events(events, epochs.metadata["sample"],
                                            tmin, tmax, sfreq)
        return cls.from_mne(epochs, window_events=window_events)

    def __len__(self):
        return self._data.shape[0]

    def __repr__(self):
        """Return a summary of the store."""
        n_flagged = int(self.reject.combined().sum())
        return (f"<EpochStore | {len(self)} epochs, {self.n_channels} channels, "
                f"{self.n_times} samples @ {self.sfreq:g} Hz, "
                f"{n_flagged} flagged>")

    @property
    def data(self):
        """Read-only array of shape ``(n_epochs, n_channels, n_times)``."""
        return self._data

    @property
    def n_channels(self):
        return self._data.shape[1]

    @property
    def n_times(self):
        return self._data.shape[2]

    @property
    def times(self):
        return self.tmin + np.arange(self.n_times) / self.sfreq

    @property
    def event_ids(self):
        return self.metadata["event_id"].to_numpy()

    @property
    def has_event_ids(self):
        """Whether every epoch carries the id of its anchoring event."""
        return bool(len(self)) and bool(np.all(self.event_ids >= 0))

    def check(self):
        """Raise DetectorInputError if the store cannot be processed."""
        if len(self) == 0:
            raise DetectorInputError("The epoch store has no epochs.")
        if not np.all(np.isfinite(self._data)):
            raise DetectorInputError("The epoch store contains non-finite values.")
        return self

    def to_xarray(self):
        """Return the samples as a labelled ``(epoch, ch, time)`` DataArray."""
        return xr.DataArray(
            self._data,
            dims=("epoch", "ch", "time"),
            coords={"epoch": np.arange(len(self)), "ch": self.ch_names,
                    "time": self.times},
        )

    def get_data(self, picks="all", exclude=()):
        """Return the samples of the selected channels as a DataArray."""
        ch_names = resolve_picks(self.ch_names, picks, exclude)
        return self.to_xarray().sel(ch=ch_names)

    def pick(self, picks, exclude=()):
        """Return a store restricted to an explicit channel set."""
        ch_names = resolve_picks(self.ch_names, picks, exclude)
        idx = [self.ch_names.index(ch) for ch in ch_names]
        return EpochStore(
            self._data[:, idx],
            ch_names=ch_names,
            sfreq=self.sfreq,
            tmin=self.tmin,
            metadata=self.metadata,
            window_events=self.window_events.copy(),
            reject=self.reject,
        )

    def analysis_tensor(self):
        """Return the samples as a channels x samples x epochs array."""
        return np.transpose(self._data, (1, 2, 0)).copy()

    def copy(self):
        """Return a copy of the store, sharing the read-only samples."""
        return EpochStore(
            self._data,
            ch_names=self.ch_names,
            sfreq=self.sfreq,
            tmin=self.tmin,
            metadata=self.metadata,
            window_events=self.window_events.copy(),
            reject=self.reject,
        )

    def with_reject(self, kind, vector):
        """Return a copy of the store with a reject vector added."""
        store = self.copy()
        store.reject.add_flag_cat(kind, vector)
        return store

    def drop(self, indices):
        """Physically remove epochs.

        Parameters
        ----------
        indices : array-like of int | array-like of bool
            Positions of the epochs to remove, or a boolean vector with one
            entry per epoch.

        Returns
        -------
        EpochStore
            A new store without the removed epochs. If nothing is removed,
            this same store is returned.
        """
        indices = np.asarray(indices)
        if indices.dtype == bool:
            if indices.shape != (len(self),):
                raise ValueError(
                    f"Boolean drop mask has shape {indices.shape} but the "
                    f"store has {len(self)} epochs."
                )
            drop_mask = indices
        else:
            drop_mask = np.zeros(len(self), dtype=bool)
            drop_mask[indices.astype(int)] = True
        if not drop_mask.any():
            return self

        keep = ~drop_mask
        old_to_new = np.full(len(self), -1)
        old_to_new[keep] = np.arange(keep.sum())
        window_events = self.window_events
        if len(window_events):
            positions = window_events["epoch"].to_numpy(dtype=int)
            window_events = window_events[keep[positions]].copy()
            window_events["epoch"] = old_to_new[positions[keep[positions]]]
        logger.info(f"🧹 CONSENSUS: Removing {int(drop_mask.sum())} of "
                    f"{len(self)} epochs.")
        return EpochStore(
            self._data[keep],
            ch_names=self.ch_names,
            sfreq=self.sfreq,
            tmin=self.tmin,
            metadata=self.metadata[keep],
            window_events=window_events,
            reject=self.reject.keep(keep),
        )

    def to_mne(self, metadata=None):
        """Return the store as an :class:`mne.EpochsArray` (in volts)."""
        info = mne.create_info(self.ch_names, self.sfreq, ch_types="eeg")
        types = self.metadata["type"].astype(str)
        event_id = {code: i + 1 for i, code in enumerate(sorted(set(types)))}
        events = np.column_stack(
            [
                np.arange(len(self)) if (self.metadata["sample"] < 0).any()
                else self.metadata["sample"].to_numpy(dtype=np.int64),
                np.zeros(len(self), dtype=np.int64),
                types.map(event_id).to_numpy(dtype=np.int64),
            ]
        ).reshape(-1, 3)
        metadata = self.metadata if metadata is None else metadata
        return mne.EpochsArray(
            self._data * 1e-6,
            info,
            events=events,
            tmin=self.tmin,
            event_id=event_id or None,
            metadata=metadata.reset_index(drop=True),
            verbose=False,
        )


def _find_window_events(events, anchor_samples, tmin, tmax, sfreq):
    """List the events that fall inside each epoch window."""
    table = events.to_data_frame()
    rows = []
    starts = np.asarray(anchor_samples) + int(round(tmin * sfreq))
    stops = np.asarray(anchor_samples) + int(round(tmax * sfreq))
    for epoch, (start, stop) in enumerate(zip(starts, stops)):
        inside = table[(table["sample"] >= start) & (table["sample"] < stop)]
        rows.append(inside.assign(epoch=epoch))
    if not rows:
        return None
    return pd.concat(rows, ignore_index=True)[["epoch"] + METADATA_COLUMNS]
