"""Allow ``python -m laptop_registry``."""

import sys

from laptop_registry.cli import main

sys.exit(main())
