import os

# Keep app.main from creating an on-disk cache while tests import it.
os.environ.setdefault("CACHE_DB_PATH", ":memory:")
