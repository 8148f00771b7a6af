"""Allow ``python -m tokenflow``."""

import sys

from .cli import main


sys.exit(main())
