import os


def parse_tables(raw: str) -> dict:
    """
    Parse "T-1:4,T-2:6,BAR" into an ordered {table_id: capacity or None} mapping.
    """
    tables = {}
    for chunk in (raw or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, _, capacity = chunk.partition(":")
        name = name.strip()
        capacity = capacity.strip()
        tables[name] = int(capacity) if capacity else None
    return tables


DEFAULT_TABLES = ",".join(f"T-{n}:4" for n in range(1, 11))


class Config:
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-secret")

    # LOCAL mode uses SQLite
    LOCAL_DB = os.getenv("LOCAL_DB", "1") == "1"

    if os.getenv("DATABASE_URL"):
        SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL")
    elif LOCAL_DB:
        SQLALCHEMY_DATABASE_URI = "sqlite:///local.db"
    else:
        DB_USER = os.getenv("DB_USER", "")
        DB_PASS = os.getenv("DB_PASS", "")
        DB_NAME = os.getenv("DB_NAME", "")
        CLOUD_SQL_CONNECTION_NAME = os.getenv("CLOUD_SQL_CONNECTION_NAME", "")
        SQLALCHEMY_DATABASE_URI = (
            f"postgresql+psycopg2://{DB_USER}:{DB_PASS}@/"
            f"{DB_NAME}?host=/cloudsql/{CLOUD_SQL_CONNECTION_NAME}"
        )

    # Bookable units, "id[:capacity]" comma separated
    TABLES = parse_tables(os.getenv("RESTAURANT_TABLES", DEFAULT_TABLES))
    RESERVATION_WINDOW_HOURS = float(os.getenv("RESERVATION_WINDOW_HOURS", "2"))

    # "log" or "whatsapp"
    NOTIFIER = os.getenv("NOTIFIER", "log")
    NOTIFY_TIMEOUT_SECONDS = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "10"))
    RESTAURANT_NAME = os.getenv("RESTAURANT_NAME", "Our Restaurant")
    CURRENCY_LABEL = os.getenv("CURRENCY_LABEL", "Rs.")

    FIRESTORE_EVENTS = os.getenv("FIRESTORE_EVENTS", "0") == "1"

    RESET_TOKEN_MINUTES = int(os.getenv("RESET_TOKEN_MINUTES", "10"))
    # link emailed for password resets; defaults to <host>/reset-password
    RESET_URL_BASE = os.getenv("RESET_URL_BASE", "")
    # return the raw reset token in the API response (local development only)
    EXPOSE_RESET_TOKEN = os.getenv("EXPOSE_RESET_TOKEN", "0") == "1"

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
