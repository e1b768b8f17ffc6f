import os
import tempfile

# database.py builds its engine at import time; keep it out of the repo.
os.environ.setdefault("BUDGET_DATA_DIR", tempfile.mkdtemp(prefix="budget-tests-"))
