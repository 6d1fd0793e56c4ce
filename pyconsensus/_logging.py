import time

from mne.utils import logger
from functools import wraps


def consensus_logger(func=None, *, message=None, verbose=True):
    """Handle start and completion logging for pipeline steps.

    Parameters
    ----------
    func
        pipeline method to be logged
    message : str
        message about the step being run to provide to user
    verbose : bool
        if True, print logging message. if False, suppress logging
        message.
    """
    if func is None:
        return lambda f: consensus_logger(f, message=message, verbose=verbose)

    @wraps(func)
    def wrapper(*args, message=None, **kwargs):
        start_time = time.time()
        this_step = message if message is not None else func.__name__
        if verbose:
            logger.info(f"CONSENSUS: 🚩 {this_step}.")
        result = func(*args, **kwargs)
        end_time = time.time()
        dur = f"{end_time - start_time:.2f}"
        if verbose:
            logger.info(f"CONSENSUS: 🏁 Finished {this_step} after {dur}"
                        " seconds.")
        return result

    return wrapper


def consensus_time(func):
    """Log the time of a full recording run."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        logger.info(" ⏩ CONSENSUS: Starting consensus pipeline.")
        start_time = time.time()
        result = func(*args, **kwargs)
        end_time = time.time()
        dur = f"{(end_time - start_time) / 60:.2f}"
        logger.info(f"  ✅ CONSENSUS: Pipeline completed! took {dur} minutes.")
        return result

    return wrapper
