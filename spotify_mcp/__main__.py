"""Allow ``python -m spotify_mcp``."""

import sys

from .cli import main


sys.exit(main())
