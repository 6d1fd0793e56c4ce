# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#          James Desjardins <jim.a.desjardins@gmail.com>
#          Tyler Collins <collins.tyler.k@gmail.com>
#
# License: MIT

"""Per-epoch artifact detectors.

Every check is a pure function of an ``(epoch, ch, time)`` DataArray in
microvolts. It returns a boolean ``(epoch, ch)`` DataArray telling which
channel triggered the check in which epoch; an epoch is rejected as soon as
one of its channels is flagged.
"""

import numpy as np
import pandas as pd
import xarray as xr

from mne.utils import logger

from .errors import ConfigurationError, DetectorInputError

SEQUENTIAL_CHECKS = (
    "extreme_value",
    "peak_to_peak",
    "step_like",
    "linear_trend",
    "flatline",
)


def ms_to_samples(duration, sfreq):
    """Convert a duration in milliseconds to a number of samples (>= 1)."""
    return max(int(round(duration * sfreq / 1000.0)), 1)


def moving_windows(n_times, window, step):
    """Return the (start, stop) sample limits of a moving window.

    The windows tile the whole epoch. If the last full window stops before
    the end of the epoch, one more window covering the remaining samples is
    added.

    Parameters
    ----------
    n_times : int
        Number of samples in the epoch.
    window : int
        Window length, in samples.
    step : int
        Distance between the starts of two consecutive windows, in samples.

    Returns
    -------
    list of tuple
    """
    if window <= 0 or step <= 0:
        raise ConfigurationError("window and step must be positive.")
    if step > window:
        raise ConfigurationError(
            f"step ({step} samples) cannot be larger than window "
            f"({window} samples)."
        )
    if window >= n_times:
        return [(0, n_times)]
    starts = list(range(0, n_times - window + 1, step))
    if starts[-1] + window < n_times:
        starts.append(starts[-1] + step)
    return [(start, min(start + window, n_times)) for start in starts]


def _windowed_max(data, windows, stat):
    """Max over windows of a per-window statistic, shape (epoch, ch)."""
    values = np.stack([stat(data[..., start:stop]) for start, stop in windows])
    return values.max(axis=0)


def _windowed_min(data, windows, stat):
    values = np.stack([stat(data[..., start:stop]) for start, stop in windows])
    return values.min(axis=0)


def _ptp(segment):
    return np.ptp(segment, axis=-1)


def _half_mean_difference(segment):
    half = segment.shape[-1] // 2
    if half == 0:
        return np.zeros(segment.shape[:-1])
    first = segment[..., :half].mean(axis=-1)
    second = segment[..., half:].mean(axis=-1)
    return np.abs(second - first)


def _as_flags(values, data):
    return xr.DataArray(
        values,
        dims=("epoch", "ch"),
        coords={"epoch": data.coords["epoch"], "ch": data.coords["ch"]},
    )


def flag_extreme_values(data, threshold):
    """Flag channels whose absolute amplitude exceeds ``threshold``.

    Equality does not flag.
    """
    return _as_flags(np.abs(data.values).max(axis=-1) > threshold, data)


def flag_peak_to_peak(data, threshold, window, step, sfreq):
    """Flag channels whose peak-to-peak amplitude exceeds ``threshold``.

    Parameters
    ----------
    data : xarray.DataArray
        Samples in microvolts, dims ``(epoch, ch, time)``.
    threshold : float
        Peak-to-peak threshold, in microvolts.
    window, step : float
        Moving window length and step, in milliseconds.
    sfreq : float
        Sampling frequency, in Hz.
    """
    windows = moving_windows(data.sizes["time"], ms_to_samples(window, sfreq),
                             ms_to_samples(step, sfreq))
    return _as_flags(_windowed_max(data.values, windows, _ptp) > threshold, data)


def flag_step_like(data, threshold, window, step, sfreq):
    """Flag channels with a step-like change larger than ``threshold``.

    In each window, the step is the absolute difference between the mean
    of the second half and the mean of the first half of the window.
    """
    windows = moving_windows(data.sizes["time"], ms_to_samples(window, sfreq),
                             ms_to_samples(step, sfreq))
    steps = _windowed_max(data.values, windows, _half_mean_difference)
    return _as_flags(steps > threshold, data)


def linear_trend(data):
    """Fit a line to each channel of each epoch.

    The regressor is the sample index normalised by the number of samples,
    so the slope is the change (in microvolts) across the whole epoch.

    Returns
    -------
    slope : numpy.ndarray
        Array of shape (n_epochs, n_channels).
    r2 : numpy.ndarray
        Coefficient of determination of each fit. Constant channels have an
        R² of 0.
    """
    values = data.values
    n_times = values.shape[-1]
    x = np.arange(1, n_times + 1) / n_times
    x_centered = x - x.mean()
    sxx = x_centered @ x_centered
    y_centered = values - values.mean(axis=-1, keepdims=True)
    slope = (y_centered @ x_centered) / sxx
    ss_tot = (y_centered ** 2).sum(axis=-1)
    ss_res = np.clip(ss_tot - slope ** 2 * sxx, 0, None)
    r2 = np.zeros_like(ss_tot)
    np.divide(ss_res, ss_tot, out=r2, where=ss_tot > 0)
    r2 = np.where(ss_tot > 0, 1 - r2, 0.0)
    return slope, r2


def flag_linear_trend(data, min_slope, min_r2):
    """Flag channels with a strong and confident linear drift.

    Both ``|slope| > min_slope`` and ``R² > min_r2`` must hold.
    """
    slope, r2 = linear_trend(data)
    return _as_flags((np.abs(slope) > min_slope) & (r2 > min_r2), data)


def flag_flatline(data, tolerance=0.0, window=None, step=None, sfreq=None):
    """Flag channels whose peak-to-peak amplitude is at most ``tolerance``.

    Without a window, the whole epoch is evaluated at once.
    """
    n_times = data.sizes["time"]
    if window is None:
        windows = [(0, n_times)]
    else:
        if sfreq is None:
            raise ConfigurationError("sfreq is required for a flatline window.")
        step = window if step is None else step
        windows = moving_windows(n_times, ms_to_samples(window, sfreq),
                                 ms_to_samples(step, sfreq))
        # a single sample has no amplitude range
        windows = [(start, stop) for start, stop in windows
                   if stop - start > 1] or [(0, n_times)]
    flat = _windowed_min(data.values, windows, _ptp) <= tolerance
    return _as_flags(flat, data)


def combine_reject_vectors(*vectors):
    """Combine reject vectors with a logical OR."""
    if not vectors:
        raise ValueError("At least one reject vector is required.")
    combined = np.zeros(np.shape(vectors[0]), dtype=bool)
    for vector in vectors:
        combined = combined | np.asarray(vector, dtype=bool)
    return combined


def _check_positive(name, value):
    if value is None or not np.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{name} must be positive. Got {value}")


def _check_window(kind, window, step):
    _check_positive(f"{kind}_window", window)
    _check_positive(f"{kind}_step", step)
    if step > window:
        raise ConfigurationError(
            f"{kind}_step ({step} ms) cannot be larger than "
            f"{kind}_window ({window} ms)."
        )


class ArtifactReport:
    """Reject decisions of one detector on one epoch store.

    Attributes
    ----------
    name : str
        The detector name, used as the key of the reject vector.
    reject : numpy.ndarray
        Boolean vector, one entry per epoch. The logical OR of ``checks``.
    checks : dict
        Boolean vector of each individual check.
    channel_flags : xarray.DataArray
        Boolean DataArray with dims ``(check, epoch, ch)``, for diagnostics.
    """

    def __init__(self, name, channel_flags):
        self.name = name
        self.channel_flags = xr.concat(
            [flags.expand_dims(check=[check])
             for check, flags in channel_flags.items()],
            dim="check",
        )
        self.checks = {
            check: flags.any("ch").values
            for check, flags in channel_flags.items()
        }
        self.reject = combine_reject_vectors(*self.checks.values())

    def __repr__(self):
        """Return a summary of the report."""
        ret_str = f"ArtifactReport ({self.name}): |\n"
        for check, vector in self.checks.items():
            ret_str += f"  {check}: {int(vector.sum())}\n"
        ret_str += f"  total: {int(self.reject.sum())} / {len(self.reject)}\n"
        return ret_str

    @property
    def n_rejected(self):
        return int(self.reject.sum())

    def to_data_frame(self):
        """Return one row per epoch and one boolean column per check."""
        df = pd.DataFrame(self.checks)
        df[self.name] = self.reject
        df.index.name = "epoch"
        return df.reset_index()

    def flagged_channels(self, epoch):
        """Return the channels that triggered each check in an epoch."""
        flags = self.channel_flags.isel(epoch=epoch)
        return {
            check: flags.ch.values[flags.sel(check=check).values].tolist()
            for check in flags.coords["check"].values
        }


class _Detector:
    """Shared input checks of the epoch detectors."""

    name = None

    def __init__(self, picks, exclude=()):
        if picks is None:
            raise ConfigurationError(
                "The channel set must be given explicitly: 'all' or a list "
                "of channel names."
            )
        self.picks = picks
        self.exclude = list(exclude)

    def _get_data(self, store):
        if len(store) == 0:
            raise DetectorInputError(
                f"The {self.name} detector received a store with no epochs."
            )
        store.check()
        return store.get_data(self.picks, self.exclude)

    def detect(self, store):
        raise NotImplementedError

    def apply(self, store):
        """Return a copy of ``store`` carrying this detector's reject vector.

        Returns
        -------
        store : EpochStore
            The new store.
        report : ArtifactReport
            The decisions, with the individual checks.
        """
        report = self.detect(store)
        return store.with_reject(self.name, report.reject), report


class AmplitudeThresholdDetector(_Detector):
    """Flag epochs in which any sample exceeds a symmetric threshold.

    Parameters
    ----------
    threshold : float
        Threshold in microvolts. An epoch is rejected if the absolute value
        of any sample of any selected channel is larger than ``threshold``.
    picks : str | list of str
        ``"all"`` or an explicit list of channel names.
    exclude : list of str
        Channels left out of the detection, e.g. auxiliary channels.
    """

    name = "amplitude"

    def __init__(self, threshold, picks, exclude=()):
        _check_positive("threshold", threshold)
        super().__init__(picks, exclude)
        self.threshold = threshold

    def __repr__(self):
        return (f"<AmplitudeThresholdDetector | ±{self.threshold} µV, "
                f"picks={self.picks}, exclude={self.exclude}>")

    @classmethod
    def from_config(cls, config):
        """Create the detector from a :class:`~pyconsensus.config.Config`."""
        return cls(config["amplitude"]["threshold"],
                   picks=config["channels"]["picks"],
                   exclude=config["channels"].get("exclude", []))

    def detect(self, store):
        """Return the :class:`ArtifactReport` of the amplitude check."""
        data = self._get_data(store)
        flags = flag_extreme_values(data, self.threshold)
        report = ArtifactReport(self.name, {"extreme_value": flags})
        logger.info(f"📋 CONSENSUS: {report.n_rejected} / {len(store)} epoch(s) "
                    f"exceed ±{self.threshold} µV.")
        return report


class SequentialArtifactDetector(_Detector):
    """Flag epochs with a sequence of five independent checks.

    The checks run in a fixed order (extreme value, moving-window
    peak-to-peak, moving-window step, linear trend, flatline) and their
    reject vectors are combined with a logical OR.

    Parameters
    ----------
    picks : str | list of str
        ``"all"`` or an explicit list of channel names.
    exclude : list of str
        Channels left out of the detection.
    extreme_threshold : float
        Absolute amplitude threshold (µV).
    peak_to_peak_threshold : float
        Peak-to-peak threshold (µV) within the moving window.
    peak_to_peak_window, peak_to_peak_step : float
        Moving window length and step (ms) of the peak-to-peak check.
    step_threshold : float
        Threshold (µV) on the difference between the means of the two
        halves of the moving window.
    step_window, step_step : float
        Moving window length and step (ms) of the step check.
    trend_min_slope : float
        Minimum absolute slope (µV across the epoch) of a linear trend.
    trend_min_r2 : float
        Minimum R² of a linear trend.
    flatline_tolerance : float
        A channel is flat when its peak-to-peak amplitude is at most this
        value (µV). Defaults to 0, i.e. exactly constant.
    flatline_window, flatline_step : float | None
        Optional window and step (ms) of the flatline check. By default the
        whole epoch is evaluated.
    """

    name = "sequential"

    def __init__(
        self,
        picks,
        exclude=(),
        *,
        extreme_threshold=100.0,
        peak_to_peak_threshold=75.0,
        peak_to_peak_window=200.0,
        peak_to_peak_step=100.0,
        step_threshold=60.0,
        step_window=250.0,
        step_step=20.0,
        trend_min_slope=75.0,
        trend_min_r2=0.3,
        flatline_tolerance=0.0,
        flatline_window=None,
        flatline_step=None,
    ):
        super().__init__(picks, exclude)
        _check_positive("extreme_threshold", extreme_threshold)
        _check_positive("peak_to_peak_threshold", peak_to_peak_threshold)
        _check_window("peak_to_peak", peak_to_peak_window, peak_to_peak_step)
        _check_positive("step_threshold", step_threshold)
        _check_window("step", step_window, step_step)
        _check_positive("trend_min_slope", trend_min_slope)
        if trend_min_r2 is None or not 0 <= trend_min_r2 <= 1:
            raise ConfigurationError(
                f"trend_min_r2 must be between 0 and 1. Got {trend_min_r2}"
            )
        if flatline_tolerance is None or flatline_tolerance < 0:
            raise ConfigurationError(
                f"flatline_tolerance cannot be negative. Got {flatline_tolerance}"
            )
        if flatline_window is not None:
            if flatline_step is None:
                flatline_step = flatline_window
            _check_window("flatline", flatline_window, flatline_step)
        elif flatline_step is not None:
            raise ConfigurationError("flatline_step requires flatline_window.")

        self.extreme_threshold = extreme_threshold
        self.peak_to_peak_threshold = peak_to_peak_threshold
        self.peak_to_peak_window = peak_to_peak_window
        self.peak_to_peak_step = peak_to_peak_step
        self.step_threshold = step_threshold
        self.step_window = step_window
        self.step_step = step_step
        self.trend_min_slope = trend_min_slope
        self.trend_min_r2 = trend_min_r2
        self.flatline_tolerance = flatline_tolerance
        self.flatline_window = flatline_window
        self.flatline_step = flatline_step

    def __repr__(self):
        return (f"<SequentialArtifactDetector | picks={self.picks}, "
                f"exclude={self.exclude}>")

    @classmethod
    def from_config(cls, config):
        """Create the detector from a :class:`~pyconsensus.config.Config`."""
        return cls(picks=config["channels"]["picks"],
                   exclude=config["channels"].get("exclude", []),
                   **config["sequential"])

    def detect(self, store):
        """Run the five checks in order.

        Returns
        -------
        ArtifactReport
            ``report.checks`` holds the five sub-vectors and
            ``report.reject`` their logical OR.
        """
        data = self._get_data(store)
        sfreq = store.sfreq
        flags = {}
        flags["extreme_value"] = flag_extreme_values(data, self.extreme_threshold)
        flags["peak_to_peak"] = flag_peak_to_peak(
            data, self.peak_to_peak_threshold, self.peak_to_peak_window,
            self.peak_to_peak_step, sfreq
        )
        flags["step_like"] = flag_step_like(
            data, self.step_threshold, self.step_window, self.step_step, sfreq
        )
        flags["linear_trend"] = flag_linear_trend(
            data, self.trend_min_slope, self.trend_min_r2
        )
        flags["flatline"] = flag_flatline(
            data, self.flatline_tolerance, self.flatline_window,
            self.flatline_step, sfreq
        )
        report = ArtifactReport(self.name, flags)
        for check, vector in report.checks.items():
            logger.info(f"    {check}: {int(vector.sum())} epoch(s) flagged")
        logger.info(f"📋 CONSENSUS: {report.n_rejected} / {len(store)} epoch(s) "
                    "flagged by the sequential checks.")
        return report
