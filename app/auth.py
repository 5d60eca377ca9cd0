from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status

from app.models import UserRole, UserStatus
from app.services.permissions import Capability, evaluate_capabilities


@dataclass
class Principal:
    id: str
    username: str
    email: str
    role: UserRole
    status: UserStatus
    company_id: str
    company_name: str

    @property
    def active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def capabilities(self) -> frozenset[Capability]:
        return evaluate_capabilities(self.role)


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_capability(capability: Capability):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if capability not in principal.capabilities:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep
