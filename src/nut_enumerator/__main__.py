"""Allow running the enumerator with ``python -m nut_enumerator``."""
import sys

from .cli import main

sys.exit(main())
