"""Allow running dfutest as ``python -m dfutest``."""

import sys

from dfutest.cli import main

sys.exit(main())
