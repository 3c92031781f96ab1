"""
Logging utilities.
"""

import sys
import logging


def config_logger(name, level=logging.INFO, stream=sys.stdout,
                  filename=None, format='%(message)s'):
    """
    Send the ``name`` logger to a stream, a file, or both, and return it.

    Refinement tables are written one record per line, so the default
    format is the bare message. The logger does not propagate, and calling
    this again for the same name replaces its handlers.

    Parameters
    ----------
    name : str
        Logger name
    level : int
        Level for the logger and its handlers
    stream : file-like, optional
        Stream for a StreamHandler (None disables it)
    filename : str, optional
        File for a FileHandler, truncated on open
    format : str
        Record format string

    Returns
    -------
    logger : logging.Logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    for hdlr in list(logger.handlers):
        logger.removeHandler(hdlr)

    handlers = []
    if filename:
        handlers.append(logging.FileHandler(filename, 'w'))
    if stream:
        handlers.append(logging.StreamHandler(stream))
    if not handlers:
        handlers.append(logging.NullHandler())

    fmt = logging.Formatter(format)
    for hdlr in handlers:
        hdlr.setLevel(level)
        hdlr.setFormatter(fmt)
        logger.addHandler(hdlr)
    return logger
