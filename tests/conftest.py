import os

os.environ.setdefault("EXPENSES_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("EXPENSES_SCHEDULER_ENABLED", "0")
