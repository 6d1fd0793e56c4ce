# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#          James Desjardins <jim.a.desjardins@gmail.com>
#          Tyler Collins <collins.tyler.k@gmail.com>
#
# License: MIT

"""Utility Functions for running the consensus pipeline."""

from mne.utils import logger


def _report_flagged_epochs(report, n_epochs):
    for check, vector in report.checks.items():
        if vector.any():
            logger.info(f"📋 CONSENSUS: {int(vector.sum())} / {n_epochs} epoch(s) "
                        f"flagged as {check}")


def _report_consensus(result, name_a="A", name_b="B"):
    rate = result.rejection_rate * 100
    logger.info("  Combined rejection summary:")
    logger.info(f"    {name_a} rejections: {result.n_a}")
    logger.info(f"    {name_b} rejections: {result.n_b}")
    logger.info(f"    Overlap (both):      {result.overlap}")
    logger.info(f"    Total unique:        {result.union} / {result.n_initial} "
                f"({rate:.1f}%)")
