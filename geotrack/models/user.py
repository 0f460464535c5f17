from sqlalchemy import Boolean, Column, Integer, String

from geotrack.constants.roles import DEFAULT_ROLE
from geotrack.database import Base


# Directory entry for subjects and operators. Owned by the authentication
# service; this service only reads it for identity, roles and team filters.
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, index=True, nullable=False)
    email = Column(String, unique=True, nullable=False)
    role = Column(String(20), nullable=False, default=DEFAULT_ROLE.value)
    team = Column(String(100), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
