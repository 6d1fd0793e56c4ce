"""Utility functions for the consensus pipeline."""

from ._utils import _report_consensus, _report_flagged_epochs
