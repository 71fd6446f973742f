"""Allow ``python -m seek <command>``."""

import sys

from seek.cli import main

sys.exit(main())
