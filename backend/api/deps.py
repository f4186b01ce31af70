from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from database.session import SessionLocal
from models.user import User
from services.auth_service import decode_token

bearer = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


DbDep = Annotated[Session, Depends(get_db)]


def get_current_user(
    db: DbDep, creds: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)]
) -> User:
    token = creds.credentials if creds else None
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated.")

    payload = decode_token(token)
    sub = payload.get("sub") if payload else None
    if not sub:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.")

    user = db.query(User).filter(User.id == sub).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found.")
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def get_current_clinician(user: CurrentUserDep) -> User:
    if user.role != "clinician":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Clinician access required.")
    return user


def get_current_patient(user: CurrentUserDep) -> User:
    if user.role != "patient":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Patient access required.")
    return user


ClinicianDep = Annotated[User, Depends(get_current_clinician)]
PatientDep = Annotated[User, Depends(get_current_patient)]
