from dataclasses import dataclass

from geotrack.constants.roles import AUDIT_VIEWER_ROLE, has_role_at_least, is_operator


@dataclass(frozen=True)
class Caller:
    """Identity of the requester as supplied by the authentication layer."""

    user_id: int
    role: str
    ip_address: str | None = None

    @property
    def is_operator(self) -> bool:
        return is_operator(self.role)

    @property
    def can_view_audit(self) -> bool:
        return has_role_at_least(self.role, AUDIT_VIEWER_ROLE)
