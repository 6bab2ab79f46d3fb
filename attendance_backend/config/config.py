import os
import string
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Ortam değişkenlerinden ayarları okuyan sınıf.

    Süreç başlarken bir kez oluşturulur ve `create_app(config)` ile uygulamaya
    verilir; servisler ihtiyaç duydukları değerleri constructor üzerinden alır.
    """
    def __init__(self):
        # Veritabanı ve önbellek
        self.DATABASE_URL: str = os.environ.get("DATABASE_URL")
        self.DATABASE_POOL_MIN_SIZE: int = int(os.environ.get("DATABASE_POOL_MIN_SIZE", 5))
        self.DATABASE_POOL_MAX_SIZE: int = int(os.environ.get("DATABASE_POOL_MAX_SIZE", 20))
        self.DATABASE_COMMAND_TIMEOUT: float = float(os.environ.get("DATABASE_COMMAND_TIMEOUT", 10))
        self.APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL")

        # Rate limiting
        self.RATE_LIMITER_STORAGE_URL: str = os.environ.get("RATE_LIMITER_STORAGE_URL", "memory://")
        self.RATE_LIMIT_ENABLED: bool = _env_bool("RATE_LIMIT_ENABLED", True)

        # JWT (tokenlar dış kimlik servisi tarafından üretilir, burada sadece doğrulanır)
        self.SECRET_KEY: str = os.environ.get("SECRET_KEY")
        self.ALGORITHM: str = os.environ.get("ALGORITHM", "HS256")

        # Yoklama oturumları
        self.SESSION_CODE_LENGTH: int = int(os.environ.get("SESSION_CODE_LENGTH", 6))
        self.SESSION_CODE_ALPHABET: str = os.environ.get("SESSION_CODE_ALPHABET", string.ascii_uppercase + string.digits)
        self.SESSION_CODE_MAX_ATTEMPTS: int = int(os.environ.get("SESSION_CODE_MAX_ATTEMPTS", 5))
        self.QR_CODE_SIZE: int = int(os.environ.get("QR_CODE_SIZE", 300))

        # Loglama
        self.LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
        self.LOG_DIR: str = os.environ.get("LOG_DIR", "logs")


# Ayarların tek ve içe aktarılabilir bir örneğini oluştur
settings = Config()
