#!/usr/bin/env python3
"""loginsight entry point."""

import sys

from loginsight.cli import main

if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(0)
    except BrokenPipeError:
        sys.exit(0)
