import numpy as np

import mne

DEFAULT_EVENT_TYPES = ["11", "22", "99", "11", "22", "11", "99", "22", "11",
                       "22", "11", "22"]


def simulate_raw(n_channels=16, sfreq=200.0, event_types=None, artifacts=True,
                 noise_std=3.0, event_spacing=1.0, seed=0):
    """Simulate an average-referenced recording with stimulus events.

    Events are written on a ``"STI 014"`` stim channel, one every
    ``event_spacing`` seconds starting at 1 second. With the default event
    types, events 3 and 7 are responses (type ``"99"``) and the other ten
    are stimuli.

    Parameters
    ----------
    n_channels : int
        Number of EEG channels.
    sfreq : float
        Sampling frequency in Hz.
    event_types : list of str | None
        Type code of each event, in order. Codes must be integers.
    artifacts : bool
        Whether to add one artifact of each kind, see Notes.
    noise_std : float
        Standard deviation of the background activity, in microvolts.
    event_spacing : float
        Time between consecutive events, in seconds.
    seed : int
        Random seed.

    Returns
    -------
    raw : instance of RawArray
        The simulated recording.
    artifacts : dict
        Maps an artifact kind to the 0-based position, among the stimuli,
        of the epoch it was added to.

    Notes
    -----
    The artifacts are placed in the stimulus epochs (-0.2 to 0.25 s):

    * ``"spike"``: a 300 µV single-sample spike on the first channel
      (exceeds any amplitude threshold);
    * ``"step"``: an 80 µV step on the second channel 50 ms after the
      stimulus;
    * ``"drift"``: a 90 µV linear drift across the epoch on the third
      channel;
    * ``"flatline"``: every channel constant during the epoch.
    """
    if event_types is None:
        event_types = DEFAULT_EVENT_TYPES
    rng = np.random.RandomState(seed)
    n_times = int(round((len(event_types) + 1) * event_spacing * sfreq))
    times = np.arange(n_times) / sfreq

    # µV: gaussian noise and a weak alpha rhythm
    data = noise_std * rng.randn(n_channels, n_times)
    phases = rng.uniform(0, 2 * np.pi, size=(n_channels, 1))
    data += 2.0 * np.sin(2 * np.pi * 10.0 * times + phases)

    samples = (np.arange(1, len(event_types) + 1) * event_spacing * sfreq)
    samples = np.round(samples).astype(int)
    stim_samples = [sample for sample, event_type in zip(samples, event_types)
                    if event_type in ("11", "22")]
    start, stop = int(round(-0.2 * sfreq)), int(round(0.25 * sfreq))

    injected = {}
    if artifacts:
        if len(stim_samples) < 9:
            raise ValueError("At least 9 stimulus events are needed to add "
                             "the artifacts.")
        injected = dict(spike=1, step=4, drift=6, flatline=8)

        onset = stim_samples[injected["spike"]] + int(round(0.1 * sfreq))
        data[0, onset] += 300.0

        onset = stim_samples[injected["step"]] + int(round(0.05 * sfreq))
        data[1, onset:stim_samples[injected["step"]] + stop] += 80.0

        anchor = stim_samples[injected["drift"]]
        data[2, anchor + start:anchor + stop] += np.linspace(0, 90.0, stop - start)

    # average reference
    data -= data.mean(axis=0, keepdims=True)

    if artifacts:
        anchor = stim_samples[injected["flatline"]]
        data[:, anchor + start:anchor + stop] = 0.0

    stim = np.zeros((1, n_times))
    for sample, event_type in zip(samples, event_types):
        stim[0, sample:sample + 5] = int(event_type)

    ch_names = [f"EEG {ii + 1:03}" for ii in range(n_channels)] + ["STI 014"]
    ch_types = ["eeg"] * n_channels + ["stim"]
    info = mne.create_info(ch_names, sfreq, ch_types=ch_types)
    raw = mne.io.RawArray(np.concatenate([data * 1e-6, stim]), info,
                          verbose=False)
    return raw, injected
