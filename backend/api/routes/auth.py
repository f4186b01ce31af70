from fastapi import APIRouter, HTTPException, status

from api.deps import CurrentUserDep, DbDep
from schemas.auth import LoginRequest, LoginResponse, MeResponse
from services.auth_service import authenticate, create_access_token

router = APIRouter()


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, db: DbDep):
    user = authenticate(db, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials.")
    token = create_access_token(sub=str(user.id), role=user.role, email=user.email)
    return LoginResponse(access_token=token, token_type="bearer", role=user.role, email=user.email)


@router.get("/me", response_model=MeResponse)
def me(user: CurrentUserDep):
    return MeResponse(id=str(user.id), email=user.email, name=user.name, role=user.role, clinician_id=user.clinician_id)
