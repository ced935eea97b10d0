from __future__ import annotations
from typing import Optional
from pydantic import BaseModel, ConfigDict, model_validator


class TenantContext(BaseModel):
    """Tenant a token is bound to, as resolved from an active membership."""
    tenant_id: int
    tenant_name: str
    role: str


class Claims(BaseModel):
    """
    Signed JWT payload shared by every service.

    Field names are the wire names. tenant_name and role travel with
    tenant_id: all three are present or all three are absent.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    user_id: int
    email: str
    tenant_id: Optional[int] = None
    tenant_name: Optional[str] = None
    role: Optional[str] = None
    iat: Optional[int] = None
    exp: Optional[int] = None

    @model_validator(mode="after")
    def _tenant_fields_travel_together(self) -> "Claims":
        has_tenant = self.tenant_id is not None
        if has_tenant != (self.tenant_name is not None) or has_tenant != (self.role is not None):
            raise ValueError("tenant_id, tenant_name and role must be all present or all absent")
        return self

    @classmethod
    def for_identity(cls, user_id: int, email: str, tenant: Optional[TenantContext] = None) -> "Claims":
        if tenant is None:
            return cls(user_id=user_id, email=email)
        return cls(
            user_id=user_id,
            email=email,
            tenant_id=tenant.tenant_id,
            tenant_name=tenant.tenant_name,
            role=tenant.role,
        )

    @property
    def tenant(self) -> Optional[TenantContext]:
        if self.tenant_id is None:
            return None
        return TenantContext(tenant_id=self.tenant_id, tenant_name=self.tenant_name, role=self.role)
