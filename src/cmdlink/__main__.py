"""Allow ``python -m cmdlink``."""

import sys

from .main import main

sys.exit(main())
