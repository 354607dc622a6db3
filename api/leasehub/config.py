
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./leasehub.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "contracts")
MINIO_PUBLIC_URL = os.getenv("MINIO_PUBLIC_URL", f"http://{MINIO_ENDPOINT}")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
NOTIFY_CHANNEL_PREFIX = os.getenv("NOTIFY_CHANNEL_PREFIX", "leasehub")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# eKYC providers
IDENTITY_PROVIDER = os.getenv("IDENTITY_PROVIDER", "fpt")
OCR_API_URL = os.getenv("OCR_API_URL", "https://api.fpt.ai/vision/idr/vnm")
FACE_MATCH_API_URL = os.getenv("FACE_MATCH_API_URL", "https://api.fpt.ai/dmp/checkface/v1")
IDENTITY_API_KEY = os.getenv("IDENTITY_API_KEY", "")
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "20"))
FACE_MATCH_THRESHOLD = int(os.getenv("FACE_MATCH_THRESHOLD", "80"))
IDENTITY_MAX_ATTEMPTS = int(os.getenv("IDENTITY_MAX_ATTEMPTS", "0"))
IDENTITY_UPLOAD_DIR = os.getenv("IDENTITY_UPLOAD_DIR", os.path.join(os.getcwd(), "uploads", "identity"))
IDENTITY_MAX_BYTES = int(os.getenv("IDENTITY_MAX_BYTES", str(6 * 1024 * 1024)))

# renewals
RENEWAL_WINDOW_DAYS = int(os.getenv("RENEWAL_WINDOW_DAYS", "60"))
REMINDER_DAYS_AHEAD = int(os.getenv("REMINDER_DAYS_AHEAD", "30"))

# background jobs
WORKER_QUEUE = os.getenv("WORKER_QUEUE", "leasehub")
