# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#
# License: MIT

"""Decide which decomposed components are artifacts and remove them."""

import numpy as np
import pandas as pd
import scipy.linalg

from mne.preprocessing import ICA
from mne.utils import logger

from .config.rejection import ComponentRejectionPolicy, IC_CATEGORIES
from .errors import ConfigurationError, DetectorInputError, RankDeficientSkip
from .flagging import FlaggedICs
from .utils.check import import_optional_dependency


def expected_rank(n_channels, n_bad=0, n_reference_pairs=1):
    """Rank expected from the channel bookkeeping.

    Parameters
    ----------
    n_channels : int
        Number of channels in the recording.
    n_bad : int
        Number of bad channels removed before the decomposition.
    n_reference_pairs : int
        Number of linked references (e.g. 1 for linked mastoids). Each one
        removes one dimension from the data.

    Returns
    -------
    int
    """
    rank = n_channels - n_bad - n_reference_pairs
    if rank <= 0:
        raise ConfigurationError(
            f"{n_channels} channels minus {n_bad} bad channel(s) and "
            f"{n_reference_pairs} reference pair(s) leaves no dimension."
        )
    return rank


def observed_rank(data, tol=None):
    """Return the numerical rank of a ``(n_channels, n_times)`` matrix.

    Singular values below ``tol`` are treated as zero. The default
    tolerance is the one used by :func:`numpy.linalg.matrix_rank`.
    """
    data = np.asarray(data, dtype=float)
    singular_values = scipy.linalg.svdvals(data)
    if not singular_values.size:
        return 0
    if tol is None:
        tol = singular_values.max() * max(data.shape) * np.finfo(float).eps
    return int((singular_values > tol).sum())


def check_rank(data, bad_channels=(), n_reference_pairs=1, tol=None):
    """Make sure the data rank matches the channel bookkeeping.

    Parameters
    ----------
    data : numpy.ndarray
        Continuous data of shape ``(n_channels, n_times)``, bad channels
        included.
    bad_channels : list of int
        Indices of the bad channels, removed before computing the observed
        rank.
    n_reference_pairs : int
        Number of linked reference pairs.
    tol : float | None
        Tolerance passed to :func:`observed_rank`.

    Returns
    -------
    int
        The rank to use for the decomposition.

    Raises
    ------
    RankDeficientSkip
        If the observed rank differs from the expected one.
    """
    data = np.asarray(data)
    bad_channels = sorted(set(int(idx) for idx in bad_channels))
    if any(idx < 0 or idx >= data.shape[0] for idx in bad_channels):
        raise ConfigurationError(
            f"Bad channel indices {bad_channels} are out of range for "
            f"{data.shape[0]} channels."
        )
    good = np.setdiff1d(np.arange(data.shape[0]), bad_channels)
    expected = expected_rank(data.shape[0], len(bad_channels), n_reference_pairs)
    observed = observed_rank(data[good], tol=tol)
    if observed != expected:
        raise RankDeficientSkip(expected, observed)
    logger.info(f"🔍 CONSENSUS: data rank is {expected}.")
    return expected


def remove_components(data, mixing, unmixing, exclude):
    """Subtract components from continuous data.

    Parameters
    ----------
    data : numpy.ndarray
        Continuous data of shape ``(n_channels, n_times)``.
    mixing : numpy.ndarray
        Mixing matrix, shape ``(n_channels, n_components)``.
    unmixing : numpy.ndarray
        Unmixing matrix, shape ``(n_components, n_channels)``.
    exclude : list of int
        Components to remove.

    Returns
    -------
    numpy.ndarray
        The cleaned data, same shape as ``data``.
    """
    data = np.asarray(data, dtype=float)
    mixing = np.asarray(mixing, dtype=float)
    unmixing = np.asarray(unmixing, dtype=float)
    n_channels = data.shape[0]
    if mixing.shape[0] != n_channels or unmixing.shape[1] != n_channels:
        raise DetectorInputError(
            f"Mixing {mixing.shape} and unmixing {unmixing.shape} matrices do "
            f"not match data with {n_channels} channels."
        )
    if mixing.shape[1] != unmixing.shape[0]:
        raise DetectorInputError("Mixing and unmixing matrices disagree on the "
                                 "number of components.")
    exclude = list(exclude)
    if not exclude:
        return data.copy()
    sources = unmixing[exclude] @ data
    return data - mixing[:, exclude] @ sources


def label_components(inst, ica):
    """Estimate the category probabilities of each component with ICLabel.

    Parameters
    ----------
    inst : mne.io.Raw | mne.Epochs
        The data the ICA was fitted on.
    ica : mne.preprocessing.ICA
        The fitted decomposition.

    Returns
    -------
    pandas.DataFrame
        One row per component, one column per category of
        ``IC_CATEGORIES``.
    """
    import_optional_dependency(
        "mne_icalabel", extra="ICLabel is needed to label components."
    )
    from mne_icalabel.iclabel import iclabel_label_components

    probabilities = iclabel_label_components(inst, ica)
    return pd.DataFrame(np.asarray(probabilities), columns=list(IC_CATEGORIES))


def run_decomposition(raw, n_components=None, random_state=97, max_iter="auto",
                      picks="eeg"):
    """Fit an extended-Infomax ICA on continuous data.

    Parameters
    ----------
    raw : mne.io.Raw
        The continuous recording, bad channels marked in ``raw.info["bads"]``.
    n_components : int | None
        Number of components, usually the rank returned by
        :func:`check_rank`.
    random_state : int
        Seed of the decomposition.
    max_iter : int | str
        Passed to :class:`mne.preprocessing.ICA`.

    Returns
    -------
    mne.preprocessing.ICA
    """
    ica = ICA(
        n_components=n_components,
        method="infomax",
        fit_params=dict(extended=True),
        random_state=random_state,
        max_iter=max_iter,
    )
    ica.fit(raw, picks=picks)
    return ica


class ComponentArtifactClassifier:
    """Apply a rejection policy to component category probabilities.

    Parameters
    ----------
    policy : ComponentRejectionPolicy | None
        The acceptance intervals. Defaults to rejecting components whose
        muscle or eye probability is in ``[0.8, 1]``.
    """

    def __init__(self, policy=None):
        if policy is None:
            policy = ComponentRejectionPolicy()
        self.policy = policy

    def __repr__(self):
        return f"<ComponentArtifactClassifier | {self.policy['intervals']}>"

    @classmethod
    def from_config(cls, config):
        """Create the classifier from a :class:`~pyconsensus.config.Config`."""
        section = config.get("ica_rejection", {})
        policy = ComponentRejectionPolicy(
            muscle_threshold=section.get("muscle_threshold", 0.8),
            eye_threshold=section.get("eye_threshold", 0.8),
            intervals=section.get("intervals"),
        )
        return cls(policy)

    def classify(self, probabilities):
        """Decide which components are artifacts.

        Parameters
        ----------
        probabilities : array-like | pandas.DataFrame
            Shape ``(n_components, 7)``, columns in the order of
            ``IC_CATEGORIES``.

        Returns
        -------
        FlaggedICs
        """
        if isinstance(probabilities, pd.DataFrame):
            missing = set(IC_CATEGORIES) - set(probabilities.columns)
            if missing:
                raise DetectorInputError(
                    f"Missing component categories: {sorted(missing)}"
                )
            probabilities = probabilities[list(IC_CATEGORIES)].to_numpy()
        probabilities = np.asarray(probabilities, dtype=float)
        if probabilities.ndim != 2 or probabilities.shape[1] != len(IC_CATEGORIES):
            raise DetectorInputError(
                "Component probabilities must have shape "
                f"(n_components, {len(IC_CATEGORIES)}). Got {probabilities.shape}"
            )
        if np.any(~np.isfinite(probabilities)) or np.any(
            (probabilities < 0) | (probabilities > 1)
        ):
            raise DetectorInputError("Component probabilities must be in [0, 1].")

        table = self.policy.threshold_table()
        inside = np.zeros_like(probabilities, dtype=bool)
        for col, category in enumerate(IC_CATEGORIES):
            low, high = table.loc[category, ["min", "max"]]
            if np.isnan(low) or np.isnan(high):
                continue
            inside[:, col] = ((probabilities[:, col] >= low)
                              & (probabilities[:, col] <= high))

        categories = np.array(IC_CATEGORIES)
        flagged = FlaggedICs(probabilities, columns=list(IC_CATEGORIES))
        flagged.insert(0, "component", np.arange(len(probabilities)))
        flagged["ic_type"] = categories[probabilities.argmax(axis=1)]
        flagged["confidence"] = probabilities.max(axis=1)
        flagged["reject"] = inside.any(axis=1)
        flagged["reason"] = [",".join(categories[row]) for row in inside]
        logger.info(f"📋 CONSENSUS: {int(flagged['reject'].sum())} of "
                    f"{len(flagged)} component(s) flagged as artifacts.")
        return flagged

    def apply(self, raw, ica, flagged):
        """Remove the flagged components from a copy of ``raw``.

        Parameters
        ----------
        raw : mne.io.Raw
            The continuous recording.
        ica : mne.preprocessing.ICA
            The fitted decomposition.
        flagged : FlaggedICs
            The output of :meth:`classify`.

        Returns
        -------
        mne.io.Raw
            The cleaned copy.
        int
            The rank left for any later decomposition.
        """
        exclude = flagged.rejected
        raw = raw.copy()
        if exclude:
            logger.info(f"🧹 CONSENSUS: Removing component(s) {exclude}.")
            ica.apply(raw, exclude=exclude)
        else:
            logger.info("🧹 CONSENSUS: No component removed.")
        return raw, remaining_rank(ica.n_components_, len(exclude))


def remaining_rank(rank, n_removed):
    """Rank of the data after ``n_removed`` components were subtracted."""
    if n_removed > rank:
        raise ValueError(f"Cannot remove {n_removed} components from rank {rank}.")
    return rank - n_removed
