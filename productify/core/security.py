from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from productify.core.config import settings
from productify.services.exceptions import AuthenticationError


def create_access_token(data: dict, expires_delta: Optional[int] = None) -> str:
	to_encode = data.copy()
	expire = datetime.now(timezone.utc) + timedelta(minutes=expires_delta or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
	to_encode.update({"exp": expire})
	return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_user_token(user_id: int, expires_delta: Optional[int] = None) -> str:
	# `sub` must be a string per RFC 7519
	return create_access_token({"sub": str(user_id)}, expires_delta)


def decode_user_id(token: str) -> int:
	"""Return the user id carried in the token's `sub` claim."""
	try:
		payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
	except JWTError as e:
		raise AuthenticationError("Invalid token", details={"reason": str(e)}) from e

	subject = payload.get("sub")
	try:
		return int(subject)
	except (TypeError, ValueError):
		raise AuthenticationError("Token subject is not a user id") from None
