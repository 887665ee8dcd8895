# Ensure '<repo root>' is on sys.path so imports resolve the same way
# whether pytest is started from the repo root or from 'backend/'.
from pathlib import Path
import sys

_REPO_ROOT = Path(__file__).resolve().parent.parent  # <repo>/
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

# run.py starts a server; it is not a test module
collect_ignore = ["run.py"]
