# attendance_backend/api/utilities/limiter.py

from fastapi import Request
import jwt

from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config.config import settings


def get_limiter_key(request: Request) -> str:
    """
    Rate limit için bir anahtar döndürür.
    İstekte çözülebilen bir JWT varsa kullanıcı ID'sini, yoksa istemcinin IP
    adresini anahtar olarak kullanır.
    """
    auth_header = request.headers.get("authorization")
    config = getattr(request.app.state, "config", settings)
    if auth_header and auth_header.lower().startswith("bearer ") and config.SECRET_KEY:
        token = auth_header.split(" ", 1)[1]
        try:
            # Süre kontrolüne gerek yok, sadece kullanıcı kimliğini almak istiyoruz.
            payload = jwt.decode(
                token,
                config.SECRET_KEY,
                algorithms=[config.ALGORITHM],
                options={"verify_exp": False}
            )
            user_id = payload.get("sub")
            if user_id:
                return str(user_id)
        except jwt.PyJWTError:
            # Token geçersizse IP bazlı limite geri dön.
            pass

    return get_remote_address(request)


limiter = Limiter(
    key_func=get_limiter_key,
    storage_uri=settings.RATE_LIMITER_STORAGE_URL,
    enabled=settings.RATE_LIMIT_ENABLED,
)
