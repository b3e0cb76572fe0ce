from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from lessonbook.auth import jwt_handler
from lessonbook.core.exceptions import ForbiddenError, UnauthorizedError
from lessonbook.database import get_db
from lessonbook.models.user import User

security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None:
        raise UnauthorizedError("Missing bearer token.")

    try:
        payload = jwt_handler.decode_access_token(credentials.credentials)
    except Exception as exc:
        raise UnauthorizedError("Invalid token.", code="invalid_token") from exc

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid token subject.", code="invalid_token") from None

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise UnauthorizedError("User not found.", code="invalid_token")
    return user


def require_teacher(user: User = Depends(get_current_user)) -> User:
    if not user.is_teacher:
        raise ForbiddenError("Only teachers can perform this action.")
    return user


def require_student(user: User = Depends(get_current_user)) -> User:
    if not user.is_student:
        raise ForbiddenError("Only students can perform this action.")
    return user
