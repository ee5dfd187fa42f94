import os


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "STOCKROOM_DB_URL",
        "sqlite:///stockroom.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BASE_DIR = os.path.dirname(os.path.abspath(__file__))

    # Optimistic transactions re-run their body when a concurrent writer wins.
    STOCKROOM_TXN_MAX_ATTEMPTS = int(os.getenv("STOCKROOM_TXN_MAX_ATTEMPTS", 10))
    STOCKROOM_TXN_RETRY_BACKOFF = float(os.getenv("STOCKROOM_TXN_RETRY_BACKOFF", 0.01))
    STOCKROOM_ID_COLLISION_ATTEMPTS = int(
        os.getenv("STOCKROOM_ID_COLLISION_ATTEMPTS", 3)
    )

    STOCKROOM_FETCH_CONCURRENCY = int(os.getenv("STOCKROOM_FETCH_CONCURRENCY", 5))
    # Set for sqlite:///:memory:, whose single connection serves one thread only.
    STOCKROOM_SINGLE_CONNECTION = False
    STOCKROOM_IMPORT_PLACEHOLDER_NAME = os.getenv(
        "STOCKROOM_IMPORT_PLACEHOLDER_NAME", "Untitled Item"
    )
    STOCKROOM_LOW_STOCK_THRESHOLD = int(os.getenv("STOCKROOM_LOW_STOCK_THRESHOLD", 10))

    STOCKROOM_LOG_DIR = os.getenv("STOCKROOM_LOG_DIR", os.path.join(BASE_DIR, "logs"))
    STOCKROOM_LOG_TO_FILE = os.getenv("STOCKROOM_LOG_TO_FILE", "true")
