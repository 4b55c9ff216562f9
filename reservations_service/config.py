import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./reservations.db")

REDIS_URL = os.getenv("REDIS_URL")

# External person directory used to resolve unit member names
PERSON_DIRECTORY_URL = os.getenv("PERSON_DIRECTORY_URL")

# MUST MATCH the token issuer
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "super-secret-room-reservations-key")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

AUTO_APPROVAL_HOURS = int(os.getenv("AUTO_APPROVAL_HOURS", "48"))
ADMIN_BYPASSES_RESTRICTIONS = _env_bool("ADMIN_BYPASSES_RESTRICTIONS", False)
MAX_RECURRENCE_INSTANCES = int(os.getenv("MAX_RECURRENCE_INSTANCES", "300"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
