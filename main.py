"""
Run the hello server straight from a checkout:

    python main.py

Same as `python -m helloserver` once the package is installed.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from helloserver.__main__ import main  # noqa: E402


if __name__ == "__main__":
    sys.exit(main())
