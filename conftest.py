"""Make ``sunnyvale_bot`` importable when pytest runs from a source checkout."""

import os
import sys

# ``python -m pytest`` puts the working directory on ``sys.path``; a bare
# ``pytest`` does not, so add the repository root explicitly.
ROOT_DIR = os.path.abspath(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)
