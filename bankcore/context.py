"""
Caller identity passed explicitly into every Transfer Engine call.

The dependency layer builds a CallerContext from the verified JWT and the
user's row; services receive it as an argument instead of reading identity
from request-global state.
"""

import uuid
from dataclasses import dataclass

from bankcore.models.user import UserRole


@dataclass(frozen=True)
class CallerContext:
    user_id: uuid.UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
