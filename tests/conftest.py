import os
import tempfile

# Modules read the data directory at import time; keep test runs out of /app/data.
os.environ.setdefault("ORDER_EXPORT_DATA_DIR", tempfile.mkdtemp(prefix="order_export_tests_"))
os.environ.setdefault("ORDER_EXPORT_AUTO_RESUME", "0")
