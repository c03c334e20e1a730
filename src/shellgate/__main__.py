"""Allow ``python -m shellgate``."""

import sys

from shellgate.cli import main

sys.exit(main())
