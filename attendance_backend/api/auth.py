import logging
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from pydantic import ValidationError

from ..models.db_models import Caller
from .schemas.user import TokenData

# Bu modül için özel bir logger oluşturuyoruz.
logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Caller:
    """
    Bearer token'ı decode eder, Pydantic ile doğrular ve çağıranın kimliğini
    (kullanıcı ID'si + rol) döndürür. Token üretimi dış kimlik servisinin işidir.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    config = request.app.state.config
    if not config.SECRET_KEY:
        logger.error("SECRET_KEY is not configured; every token will be rejected.")
        raise credentials_exception
    try:
        payload = jwt.decode(credentials.credentials, config.SECRET_KEY, algorithms=[config.ALGORITHM])

        # Gelen token içeriğini TokenData modeli ile doğruluyoruz.
        token_data = TokenData.model_validate(payload)
        return Caller(user_id=token_data.sub, role=token_data.role)

    except (jwt.PyJWTError, ValidationError) as e:
        # Hem JWT hatalarını (süre dolması, imza hatası) hem de Pydantic doğrulama
        # hatalarını (eksik alan, yanlış tip) yakalıyoruz.
        logger.warning(f"Token validation error: {e}")
        raise credentials_exception
