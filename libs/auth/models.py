from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class AuthUser(BaseModel):
    """
    The caller identified by a verified bearer token.
    """

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "authenticated"

    model_config = {"populate_by_name": True}

    @property
    def is_service(self) -> bool:
        return self.role == "service_role"
