import os
import secrets
import uuid
from datetime import datetime, timezone


def generate_uuid() -> str:
    return str(uuid.uuid4())

def generate_scroll_key() -> str:
    """Generates the participant access key embedded in share links."""
    return secrets.token_urlsafe(9)

def generate_owner_token() -> str:
    """Generates a secure token for host access."""
    return str(uuid.uuid4())

def get_utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def get_frontend_url() -> str:
    """Helper to get the frontend URL from CORS_ORIGINS for share links."""
    cors_origins = os.getenv("CORS_ORIGINS", "").split(",")
    # In prod, CORS_ORIGINS="https://myapp.vercel.app". In dev, "http://localhost:5173".
    if cors_origins and cors_origins[0]:
        return cors_origins[0].strip()
    return "http://localhost:5173"

def build_share_url(scroll_id: str, key: str) -> str:
    return f"{get_frontend_url()}/scroll/{scroll_id}?key={key}"

def as_number(value):
    """Stores integral floats as ints so results read back the way they were entered."""
    number = float(value or 0)
    if number.is_integer():
        return int(number)
    return number
