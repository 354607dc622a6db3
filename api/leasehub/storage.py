from minio import Minio
from .config import MINIO_ENDPOINT, MINIO_ACCESS_KEY, MINIO_SECRET_KEY, MINIO_BUCKET, MINIO_PUBLIC_URL

_client = Minio(
    MINIO_ENDPOINT,
    access_key=MINIO_ACCESS_KEY,
    secret_key=MINIO_SECRET_KEY,
    secure=False
)

def ensure_bucket():
    if not _client.bucket_exists(MINIO_BUCKET):
        _client.make_bucket(MINIO_BUCKET)

def public_url(key: str) -> str:
    return f"{MINIO_PUBLIC_URL.rstrip('/')}/{MINIO_BUCKET}/{key}"

def upload_file(local_path: str, key: str, content_type: str = "application/octet-stream") -> str:
    ensure_bucket()
    _client.fput_object(MINIO_BUCKET, key, local_path, content_type=content_type)
    return public_url(key)
