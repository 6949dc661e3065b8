from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from productify.api.dependencies.database import get_db
from productify.core.security import decode_user_id
from productify.db.models.user import User
from productify.services.exceptions import AuthenticationError, UserInactiveError, UserNotFoundError

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
	request: Request,
	credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
	db: Session = Depends(get_db),
) -> User:
	"""Resolve the bearer token's `sub` claim to an active user."""
	if credentials is None:
		raise AuthenticationError("Missing bearer token")
	user_id = decode_user_id(credentials.credentials)
	user = db.get(User, user_id)
	if user is None:
		raise UserNotFoundError(user_id)
	if not user.is_active:
		raise UserInactiveError(user_id)
	request.state.user_id = user.id
	return user
