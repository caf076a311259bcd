"""ClipForge - entry point for ``python -m clipforge``."""

import logging
import signal
import sys

if __name__ == "__main__":
    # Terminate quietly when the output pipe is closed (e.g. `| head`)
    if hasattr(signal, "SIGPIPE"):
        signal.signal(signal.SIGPIPE, signal.SIG_DFL)
    logging.raiseExceptions = False

    from clipforge.cli import main

    try:
        main()
    except BrokenPipeError:
        sys.exit(0)
