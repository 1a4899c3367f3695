import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


APP_ORIGIN = os.getenv("APP_ORIGIN", "http://localhost:8081")
KITCHEN_API_KEY = os.getenv("KITCHEN_API_KEY")

# Kitchen tuning
MAX_CONCURRENT = int(os.getenv("MAX_CONCURRENT", "3"))
COOK_DURATION = int(os.getenv("COOK_DURATION", "30"))
TICK_SECONDS = float(os.getenv("TICK_SECONDS", "1"))
POLL_SECONDS = float(os.getenv("POLL_SECONDS", "10"))
GRACE_SECONDS = float(os.getenv("GRACE_SECONDS", "30"))

# Remote status source; unset means offline (local-only) mode
STATUS_SOURCE_URL = os.getenv("STATUS_SOURCE_URL")
STATUS_SOURCE_API_KEY = os.getenv("STATUS_SOURCE_API_KEY")
STATUS_SOURCE_TIMEOUT = float(os.getenv("STATUS_SOURCE_TIMEOUT", "10"))

# Image storage (R2 / S3 or local)
USE_S3 = _flag("USE_S3")
S3_BUCKET = os.getenv("S3_BUCKET")
S3_ENDPOINT = os.getenv("S3_ENDPOINT")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")
S3_REGION = os.getenv("S3_REGION", "auto")
PRESIGN_EXPIRES = int(os.getenv("PRESIGN_EXPIRES", "3600"))
STATIC_DIR = os.getenv("STATIC_DIR") or os.path.join(os.getcwd(), "data")
SQLITE_PATH = os.getenv("SQLITE_PATH") or os.path.join(STATIC_DIR, "kitchen.sqlite")


class KitchenLimits(BaseModel):
    max_concurrent: int = Field(default=MAX_CONCURRENT, gt=0)
    cook_duration: int = Field(default=COOK_DURATION, gt=0)
    tick_seconds: float = Field(default=TICK_SECONDS, gt=0)
    poll_seconds: float = Field(default=POLL_SECONDS, gt=0)
    grace_seconds: float = Field(default=GRACE_SECONDS, ge=0)

    @classmethod
    def from_env(cls) -> "KitchenLimits":
        return cls(
            max_concurrent=MAX_CONCURRENT,
            cook_duration=COOK_DURATION,
            tick_seconds=TICK_SECONDS,
            poll_seconds=POLL_SECONDS,
            grace_seconds=GRACE_SECONDS,
        )
