"""
Back-office - Modeles Auth
"""

from pydantic import BaseModel


ADMIN_ROLES = ["super_admin", "admin"]


class UserLogin(BaseModel):
    email: str
    password: str
