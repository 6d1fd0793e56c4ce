# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#          James Desjardins <jim.a.desjardins@gmail.com>
#          Tyler Collins <collins.tyler.k@gmail.com>
#
# License: MIT

"""Classes and Functions for running the consensus pipeline."""

import os
from concurrent.futures import (ProcessPoolExecutor, ThreadPoolExecutor,
                                as_completed)
from contextlib import contextmanager
from copy import deepcopy
from importlib.metadata import version
from pathlib import Path

import numpy as np
import pandas as pd
from tqdm import tqdm

import mne
from mne.utils import logger, warn

from ._logging import consensus_logger, consensus_time
from .components import (ComponentArtifactClassifier, check_rank,
                         label_components, run_decomposition)
from .config import Config
from .consensus import ConsensusMerger
from .detectors import AmplitudeThresholdDetector, SequentialArtifactDetector
from .epochs import EpochStore
from .errors import ConfigurationError, RankDeficientSkip
from .events import OriginalEventSequence
from .identity import TrialIdentityResolver
from .utils import _report_flagged_epochs
from .utils.html import _create_html_details

OUTPUT_SUFFIXES = {
    "epochs": "_consensus-epo.fif",
    "trials": "_trials.tsv",
    "consensus": "_consensus.tsv",
    "reject_a": "_reject-a.tsv",
    "reject_b": "_reject-b.tsv",
    "iclabels": "_iclabels.tsv",
    "ica": "_ica.fif",
    "config": "_config.yaml",
}


@contextmanager
def _atomic_path(fname):
    """Yield a temporary path renamed to ``fname`` on success."""
    fname = Path(fname)
    # MNE checks the end of the file name, so only prefix it.
    tmp = fname.with_name(f".tmp_{fname.name}")
    try:
        yield tmp
        os.replace(tmp, fname)
    finally:
        if tmp.exists():
            tmp.unlink()


def get_output_paths(out_dir, recording_id):
    """Return the paths written by :meth:`ConsensusPipeline.save`."""
    out_dir = Path(out_dir)
    return {key: out_dir / f"{recording_id}{suffix}"
            for key, suffix in OUTPUT_SUFFIXES.items()}


class ConsensusPipeline:
    """Class used to run both rejection pipelines on a recording.

    Parameters
    ----------
    config_path : pathlib.Path | str | None
        Path to a config file specifying the parameters to be used in the
        pipeline.
    config : pyconsensus.config.Config | None
        :class:`pyconsensus.config.Config` object for the pipeline. If
        neither ``config`` nor ``config_path`` is given, the default
        parameters are used.

    Attributes
    ----------
    events : OriginalEventSequence
        The original event table of the recording.
    stores : dict
        The epoch stores. Keys are ``'a'`` (amplitude pipeline), ``'b'``
        (sequential pipeline) and ``'final'`` (after the consensus merge).
    reports : dict
        The :class:`~pyconsensus.detectors.ArtifactReport` of each detector.
    ics : pyconsensus.flagging.FlaggedICs | None
        The classified components of the amplitude pipeline, if any.
    ica : mne.preprocessing.ICA | None
        The decomposition the components were removed from, if any.
    rank_skip : RankDeficientSkip | None
        Set when the component removal was skipped because of a rank
        mismatch.
    consensus : ConsensusResult | None
        The merge outcome.
    identity : TrialIdentityMap | None
        The original trial number of each epoch of ``stores['final']``.
    """

    def __init__(self, config_path=None, config=None):
        """Initialize class."""
        self._config = None
        if config:
            self.config = config
            self.config_path = config_path
        elif config_path:
            self.config_path = Path(config_path)
            self.load_config()
        else:
            self.config_path = None
            self.config = Config().load_default()
        self._reset()

    def _reset(self):
        """Forget the outputs of a previous run."""
        self.events = None
        self.stores = {}
        self.reports = {}
        self.ics = None
        self.ica = None
        self.rank = None
        self.rank_skip = None
        self.consensus = None
        self.identity = None

    def _repr_html_(self):
        html = "<h3>ConsensusPipeline</h3>"
        html += "<table>"
        html += f"<tr><td><strong>Config</strong></td><td>{self.config_path}</td></tr>"
        html += f"<tr><td><strong>Events</strong></td><td>{self.events}</td></tr>"
        html += "</table>"

        flagged_epochs = {name: report.n_rejected
                          for name, report in self.reports.items()}
        html += _create_html_details("Flagged Epochs", flagged_epochs)
        if self.ics is not None:
            html += _create_html_details("Flagged ICs", self.ics.summary())
        if self.consensus is not None:
            html += _create_html_details("Consensus", self.consensus.stats)
        return html

    @property
    def config(self):
        return self._config

    @config.setter
    def config(self, config):
        self._config = config
        self._config["version"] = version("pyconsensus")

    def load_config(self):
        """Load the config file."""
        self.config = Config().read(self.config_path)

    @property
    def type_codes(self):
        return [str(code) for code in self.config["epoching"]["type_codes"]]

    def _segment(self, raw):
        epoching = self.config["epoching"]
        channels = self.config["channels"]
        return EpochStore.segment(
            raw,
            self.events,
            self.type_codes,
            tmin=epoching["tmin"],
            tmax=epoching["tmax"],
            baseline=epoching.get("baseline"),
            picks=channels["picks"],
            exclude=channels.get("exclude", []),
        )

    def _get_events(self, raw, events=None):
        if events is not None:
            self.events = events
        elif self.events is None:
            self.events = OriginalEventSequence.from_raw(raw)
        return self.events

    def _bad_channels(self, raw, bad_channels=None):
        if bad_channels is None:
            bad_channels = self.config["channels"].get("bad_channels", [])
        bad_channels = list(dict.fromkeys(list(bad_channels) + raw.info["bads"]))
        unknown = [ch for ch in bad_channels if ch not in raw.ch_names]
        if unknown:
            raise ConfigurationError(f"Unknown bad channel(s): {unknown}")
        return bad_channels

    @consensus_logger
    def remove_artifact_components(self, raw, ic_probabilities=None, ica=None,
                                   bad_channels=()):
        """Remove the artifactual components from the continuous data.

        The data rank is checked against the channel bookkeeping first. On
        a mismatch the removal is skipped, :attr:`rank_skip` is set and the
        data are returned unchanged.

        Parameters
        ----------
        raw : mne.io.Raw
            The continuous recording.
        ic_probabilities : pandas.DataFrame | numpy.ndarray | None
            Category probabilities of each component. Estimated with ICLabel
            when ``None``.
        ica : mne.preprocessing.ICA | None
            The fitted decomposition. Fitted here when ``None``.
        bad_channels : list of str
            Channels left out of the decomposition.

        Returns
        -------
        mne.io.Raw
            A cleaned copy of ``raw``.
        """
        section = self.config.get("ica_rejection", {})
        raw = raw.copy()
        raw.info["bads"] = list(bad_channels)
        eeg_names = [raw.ch_names[idx]
                     for idx in mne.pick_types(raw.info, eeg=True, exclude=[])]
        bad_idx = [eeg_names.index(ch) for ch in bad_channels if ch in eeg_names]
        try:
            self.rank = check_rank(
                raw.get_data(picks=eeg_names),
                bad_channels=bad_idx,
                n_reference_pairs=self.config["channels"].get("n_reference_pairs", 1),
            )
        except RankDeficientSkip as err:
            warn(f"Skipping the component removal: {err}")
            self.rank_skip = err
            return raw

        if ica is None:
            ica = run_decomposition(
                raw,
                n_components=section.get("n_components") or self.rank,
                random_state=section.get("random_state", 97),
                max_iter=section.get("max_iter", "auto"),
            )
        if ic_probabilities is None:
            ic_probabilities = label_components(raw, ica)

        classifier = ComponentArtifactClassifier.from_config(self.config)
        self.ica = ica
        self.ics = classifier.classify(ic_probabilities)
        raw, self.rank = classifier.apply(raw, ica, self.ics)
        return raw

    @consensus_logger
    def run_amplitude_pipeline(self, raw, ic_probabilities=None, ica=None,
                               bad_channels=None):
        """Run pipeline A: component removal, then the amplitude threshold.

        The components are removed only when ``ica`` or
        ``ic_probabilities`` is given, or when ``ica_rejection.fit_ica`` is
        set in the config.

        Returns
        -------
        EpochStore
            The store of pipeline A, with an ``'amplitude'`` reject vector.
        """
        self._get_events(raw)
        bad_channels = self._bad_channels(raw, bad_channels)
        fit_ica = self.config.get("ica_rejection", {}).get("fit_ica", False)
        if ica is not None or ic_probabilities is not None or fit_ica:
            if ic_probabilities is not None and ica is None:
                raise ConfigurationError(
                    "ic_probabilities were given without the decomposition "
                    "they describe."
                )
            raw = self.remove_artifact_components(
                raw, ic_probabilities, ica, bad_channels,
                message="Removing artifact components",
            )

        store = self._segment(raw)
        exclude = list(self.config["channels"].get("exclude", []))
        exclude += [ch for ch in bad_channels
                    if ch in store.ch_names and ch not in exclude]
        detector = AmplitudeThresholdDetector(
            self.config["amplitude"]["threshold"],
            picks=self.config["channels"]["picks"],
            exclude=exclude,
        )
        store, report = detector.apply(store)
        self.stores["a"] = store
        self.reports[detector.name] = report
        return store

    @consensus_logger
    def run_sequential_pipeline(self, raw):
        """Run pipeline B: the five sequential checks.

        Returns
        -------
        EpochStore
            The store of pipeline B, with a ``'sequential'`` reject vector.
        """
        self._get_events(raw)
        store = self._segment(raw)
        detector = SequentialArtifactDetector.from_config(self.config)
        store, report = detector.apply(store)
        _report_flagged_epochs(report, len(store))
        self.stores["b"] = store
        self.reports[detector.name] = report
        return store

    @consensus_logger
    def merge(self):
        """Union the reject vectors of both pipelines and prune the epochs.

        Returns
        -------
        ConsensusResult
        """
        if "a" not in self.stores or "b" not in self.stores:
            raise RuntimeError("Both pipelines must run before the merge.")
        merger = ConsensusMerger(
            base=self.config.get("consensus", {}).get("base", "a"),
            reject_a=AmplitudeThresholdDetector.name,
            reject_b=SequentialArtifactDetector.name,
        )
        self.consensus = merger.merge(self.stores["a"], self.stores["b"])
        self.stores["final"] = self.consensus.store
        return self.consensus

    @consensus_logger
    def resolve_trials(self):
        """Recover the original trial number of the surviving epochs.

        Returns
        -------
        TrialIdentityMap
        """
        if "final" not in self.stores:
            raise RuntimeError("The consensus merge must run first.")
        resolver = TrialIdentityResolver(self.type_codes)
        self.identity = resolver.resolve(self.events, self.stores["final"])
        return self.identity

    @consensus_time
    def run_with_raw(self, raw_a, raw_b=None, events=None, ic_probabilities=None,
                     ica=None, bad_channels=None):
        """Execute both pipelines on a recording, then merge them.

        Pipelines A and B run concurrently; the merge waits for both.

        Parameters
        ----------
        raw_a : mne.io.Raw
            The recording as preprocessed for pipeline A.
        raw_b : mne.io.Raw | None
            The recording as preprocessed for pipeline B. Defaults to
            ``raw_a``.
        events : OriginalEventSequence | None
            The original event table. Read from ``raw_a`` when ``None``.
        ic_probabilities, ica, bad_channels
            Passed to :meth:`run_amplitude_pipeline`.

        Returns
        -------
        ConsensusPipeline
            This pipeline, with every attribute filled in.
        """
        self.config.validate()
        raw_b = raw_a if raw_b is None else raw_b
        self._reset()
        self._get_events(raw_a, events)

        with ThreadPoolExecutor(max_workers=2) as executor:
            future_a = executor.submit(
                self.run_amplitude_pipeline, raw_a, ic_probabilities, ica,
                bad_channels, message="Running the amplitude pipeline",
            )
            future_b = executor.submit(
                self.run_sequential_pipeline, raw_b,
                message="Running the sequential pipeline",
            )
            # result() re-raises any failure of either pipeline
            future_a.result()
            future_b.result()

        self.merge(message="Merging the reject decisions")
        self.resolve_trials(message="Recovering the original trial numbers")
        return self

    def export(self):
        """Return the analysis payload of the final store.

        Returns
        -------
        dict
            ``data`` (channels x samples x epochs, in microvolts), ``time``
            (seconds), ``channels``, ``trials`` (original trial numbers, NaN
            when unresolved) and ``triggers`` (type code of each epoch).
        """
        if self.identity is None:
            raise RuntimeError("The pipeline has not been run.")
        store = self.stores["final"]
        return dict(
            data=store.analysis_tensor(),
            time=store.times,
            channels=list(store.ch_names),
            trials=self.identity.trials,
            triggers=self.identity["trigger"].tolist(),
        )

    def save(self, out_dir, recording_id, overwrite=False):
        """Save the outputs of a run.

        Each file is written under a temporary name and renamed once
        complete, so a file that exists is always complete. The epochs are
        written last. The component labels and the decomposition are only
        written when the components were removed.

        Parameters
        ----------
        out_dir : str | pathlib.Path
            The output directory.
        recording_id : str
            Prefix of the file names.
        overwrite : bool
            Whether to overwrite existing files.

        Returns
        -------
        dict
            The written paths.
        """
        if self.identity is None:
            raise RuntimeError("The pipeline has not been run.")
        paths = get_output_paths(out_dir, recording_id)
        existing = [str(path) for path in paths.values() if path.exists()]
        if existing and not overwrite:
            raise FileExistsError(
                f"Output file(s) {existing} already exist. Use overwrite=True."
            )
        Path(out_dir).mkdir(parents=True, exist_ok=True)
        if self.ics is None:
            # stale outputs of an overwritten run
            for key in ("iclabels", "ica"):
                paths.pop(key).unlink(missing_ok=True)

        with _atomic_path(paths["trials"]) as tmp:
            self.identity.save_tsv(tmp)
        with _atomic_path(paths["consensus"]) as tmp:
            self.consensus.save_tsv(tmp)
        for key in ("a", "b"):
            with _atomic_path(paths[f"reject_{key}"]) as tmp:
                self.stores[key].reject.save_tsv(tmp)
        if self.ics is not None:
            with _atomic_path(paths["iclabels"]) as tmp:
                self.ics.save_tsv(tmp)
            self.ics.fname = paths["iclabels"]
            with _atomic_path(paths["ica"]) as tmp:
                self.ica.save(tmp, overwrite=True, verbose=False)
        with _atomic_path(paths["config"]) as tmp:
            self.config.save(tmp)

        store = self.stores["final"]
        metadata = store.metadata.copy()
        metadata["trial"] = self.identity.trials
        with _atomic_path(paths["epochs"]) as tmp:
            store.to_mne(metadata=metadata).save(tmp, overwrite=True,
                                                 verbose=False)
        logger.info(f"💾 CONSENSUS: {recording_id} saved to {out_dir}.")
        return paths

    def run_dataset(self, recordings, out_dir, n_jobs=None, overwrite=False):
        """Run a full dataset.

        Recordings are independent: a failure is logged and reported in the
        summary, and the other recordings are still processed. Recordings
        whose epochs file already exists are skipped unless ``overwrite``.

        Parameters
        ----------
        recordings : dict
            Maps a recording id to an :class:`mne.io.Raw`, a path readable
            by :func:`mne.io.read_raw`, or a ``(raw_a, raw_b)`` tuple of
            those.
        out_dir : str | pathlib.Path
            The output directory.
        n_jobs : int | None
            Number of worker processes. Defaults to ``batch.n_jobs`` in the
            config.
        overwrite : bool
            Whether to reprocess recordings that were already saved.

        Returns
        -------
        BatchSummary
        """
        self.config.validate()
        if n_jobs is None:
            n_jobs = self.config.get("batch", {}).get("n_jobs", 1)
        config = deepcopy(self.config)

        rows = []
        if n_jobs == 1:
            for recording_id, source in tqdm(recordings.items()):
                rows.append(_run_recording(config, recording_id, source, out_dir,
                                           overwrite))
        else:
            with ProcessPoolExecutor(max_workers=n_jobs) as executor:
                futures = {
                    executor.submit(_run_recording, config, recording_id, source,
                                    out_dir, overwrite): recording_id
                    for recording_id, source in recordings.items()
                }
                for future in tqdm(as_completed(futures), total=len(futures)):
                    try:
                        rows.append(future.result())
                    except Exception as err:  # worker crash
                        rows.append(_failure_row(futures[future], err))
        summary = BatchSummary(rows, columns=BatchSummary.COLUMNS)
        summary = summary.set_index("recording").loc[list(recordings)].reset_index()
        logger.info(f"📋 CONSENSUS: {int((summary['status'] == 'ok').sum())} "
                    f"recording(s) processed, {summary.n_failed} failed.")
        return summary


class BatchSummary(pd.DataFrame):
    """One row per recording of a :meth:`ConsensusPipeline.run_dataset` call.

    ``rank_skip`` holds the reason the component removal was skipped for a
    recording, and is empty when it ran or was not requested.
    """

    COLUMNS = ["recording", "status", "n_initial", "n_final", "union",
               "overlap", "rank_skip", "error"]

    @property
    def _constructor(self):
        return BatchSummary

    @property
    def n_failed(self):
        return int((self["status"] == "error").sum())


def _read_source(source):
    if isinstance(source, (str, Path)):
        return mne.io.read_raw(source, preload=True, verbose=False)
    return source


def _failure_row(recording_id, err):
    return dict(recording=recording_id, status="error", n_initial=np.nan,
                n_final=np.nan, union=np.nan, overlap=np.nan, rank_skip="",
                error=f"{type(err).__name__}: {err}")


def _run_recording(config, recording_id, source, out_dir, overwrite):
    """Process and save one recording. Failures are returned, not raised."""
    paths = get_output_paths(out_dir, recording_id)
    if paths["epochs"].exists() and not overwrite:
        logger.info(f"⏭ CONSENSUS: {recording_id} already processed, skipping.")
        return dict(recording=recording_id, status="skipped", n_initial=np.nan,
                    n_final=np.nan, union=np.nan, overlap=np.nan, rank_skip="",
                    error="")
    try:
        if isinstance(source, tuple):
            raw_a, raw_b = (_read_source(src) for src in source)
        else:
            raw_a = raw_b = _read_source(source)
        pipeline = ConsensusPipeline(config=deepcopy(config))
        pipeline.run_with_raw(raw_a, raw_b)
        pipeline.save(out_dir, recording_id, overwrite=overwrite)
    except Exception as err:
        logger.error(f"❌ CONSENSUS: {recording_id} failed: {err}")
        return _failure_row(recording_id, err)
    result = pipeline.consensus
    rank_skip = "" if pipeline.rank_skip is None else str(pipeline.rank_skip)
    return dict(recording=recording_id, status="ok", n_initial=result.n_initial,
                n_final=result.n_final, union=result.union,
                overlap=result.overlap, rank_skip=rank_skip, error="")
