import sys

from loginsight.cli import main

sys.exit(main())
