from pydantic import BaseModel


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    email: str


class MeResponse(BaseModel):
    id: str
    email: str
    name: str
    role: str
    clinician_id: str | None = None
