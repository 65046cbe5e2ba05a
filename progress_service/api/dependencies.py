from __future__ import annotations

import logging
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from progress_service.models.principal import DEFAULT_STUDENT_NAME, Principal
from progress_service.repos.enrollment_repo import enrollment_repo
from progress_service.services import token_service
from progress_service.services.errors import NotEnrolledError

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal."""
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    return Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
        name=claims.get("name") or DEFAULT_STUDENT_NAME,
    )


async def ensure_enrolled(principal: Principal, course_id: str) -> None:
    """Raise 403 unless the principal is enrolled in the course.

    This is the only progress check that runs before the 202 is sent.
    """
    if await enrollment_repo.is_enrolled(principal.user_id, course_id):
        return

    err = NotEnrolledError(principal.user_id, course_id)
    logger.warning(
        "Access denied: %s",
        err,
        extra={"student_id": principal.user_id, "course_id": course_id},
    )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": err.code, "message": "Not enrolled in this course"},
    )


async def require_enrolled_in_path_course(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> Principal:
    """Dependency for routes with ``{course_id}`` in the path."""
    await ensure_enrolled(principal, course_id)
    return principal
