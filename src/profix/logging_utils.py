from __future__ import annotations

import logging
import sys

_FORMAT = "ProFix: %(message)s"
_VERBOSE_FORMAT = "ProFix [%(levelname)s] %(name)s: %(message)s"


def configure_logging(*, verbose: bool, quiet: bool) -> None:
    """Route logs to stderr; stdout carries reports and `profix serve` frames."""

    if verbose:
        level, fmt = logging.DEBUG, _VERBOSE_FORMAT
    elif quiet:
        level, fmt = logging.WARNING, _FORMAT
    else:
        level, fmt = logging.INFO, _FORMAT
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr, force=True)
