from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple
import bcrypt
from jose import JWTError, jwt

from inkpost.schemas.auth import TokenData
from inkpost.core.token_manager import generate_jti


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))

def get_password_hash(password: str) -> str:
    salt = bcrypt.gensalt()
    hashed_password = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed_password.decode('utf-8')

def create_token(
    data: Dict[str, Any],
    token_type: str,
    expires_delta: timedelta,
    secret_key: str,
    algorithm: str = "HS256",
) -> Tuple[str, str, datetime]:
    """
    Create a signed session token.

    Args:
        data: Token payload data (must include 'sub' for user ID and 'sid' for the session)
        token_type: "access" or "refresh"
        expires_delta: Lifetime of the token
        secret_key: Signing key
        algorithm: JWT algorithm

    Returns:
        Tuple of (encoded_jwt, jti, expires_at)
    """
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + expires_delta
    jti = generate_jti()

    # Ensure 'sub' is a string as required by JWT spec
    if "sub" in to_encode:
        to_encode["sub"] = str(to_encode["sub"])

    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": jti,
        "type": token_type,
    })

    encoded_jwt = jwt.encode(to_encode, secret_key, algorithm=algorithm)
    return encoded_jwt, jti, expire

def decode_token(
    token: str,
    token_type: str,
    secret_key: str,
    algorithm: str = "HS256",
) -> Optional[TokenData]:
    """
    Verify a JWT token's signature, expiry and type.

    Revocation is checked by the caller, which owns the blacklist.

    Returns:
        TokenData if valid, None otherwise
    """
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError:
        return None

    user_id_str: Optional[str] = payload.get("sub")
    if user_id_str is None or payload.get("type") != token_type:
        return None

    try:
        user_id = int(user_id_str)
    except (ValueError, TypeError):
        return None

    return TokenData(
        user_id=user_id,
        email=payload.get("email"),
        jti=payload.get("jti"),
        session_id=payload.get("sid"),
        token_type=token_type,
    )
