# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#
# License: MIT

"""Exceptions and warnings raised by the consensus pipeline."""


class ConsensusError(Exception):
    """Base class for errors raised by pyconsensus."""


class ConfigurationError(ConsensusError, ValueError):
    """Invalid thresholds, windows or channel sets.

    Raised before any processing starts.
    """


class DetectorInputError(ConsensusError, ValueError):
    """An EpochStore that cannot be processed by a detector."""


class TrialCountMismatchError(ConsensusError, RuntimeError):
    """Two epoch stores of the same recording do not describe the same trials.

    This indicates that the two pipelines segmented the recording
    differently. No partial merge is ever produced.
    """


class RankDeficientSkip(ConsensusError):
    """The data rank does not match the rank expected from the montage.

    This is recoverable: the decomposition-dependent stages are skipped
    for the recording and processing continues.

    Parameters
    ----------
    expected : int
        Rank computed from the channel bookkeeping.
    observed : int
        Numerical rank of the data matrix.
    """

    def __init__(self, expected, observed, message=None):
        self.expected = expected
        self.observed = observed
        if message is None:
            message = (f"Expected a data rank of {expected} but the data has "
                       f"rank {observed}. Skipping the decomposition.")
        super().__init__(message)


class TrialIdentityUnresolved(RuntimeWarning):
    """An epoch whose anchoring event could not be mapped to a trial number."""
