"""Consensus artifact rejection of epoched EEG with original trial recovery."""

from . import (components, config, consensus, datasets, detectors, epochs,
               errors, events, flagging, identity, pipeline, utils)
from .components import ComponentArtifactClassifier
from .consensus import ConsensusMerger, ConsensusResult
from .detectors import AmplitudeThresholdDetector, SequentialArtifactDetector
from .epochs import EpochStore
from .errors import (ConfigurationError, DetectorInputError, RankDeficientSkip,
                     TrialCountMismatchError, TrialIdentityUnresolved)
from .events import OriginalEventSequence
from .identity import TrialIdentityMap, TrialIdentityResolver
from .pipeline import ConsensusPipeline
