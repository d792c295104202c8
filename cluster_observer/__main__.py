"""Entry point for ``python -m cluster_observer``."""

import sys

from .runner import main


if __name__ == "__main__":
    sys.exit(main())
