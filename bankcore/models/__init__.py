"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all runs
  2. Other modules can import from bankcore.models directly
"""

from bankcore.models.user import User, UserRole  # noqa: F401
from bankcore.models.account import Account, AccountKind, AccountStatus  # noqa: F401
from bankcore.models.card import Card, CardActivation, CardNetwork, CardStatus  # noqa: F401
from bankcore.models.movement import Movement, MovementKind, MovementState  # noqa: F401
from bankcore.models.alert import AlertKind, OperatorAlert  # noqa: F401
from bankcore.models.notification import UserNotification  # noqa: F401
from bankcore.models.verification import (  # noqa: F401
    StepStatus,
    VerificationCase,
    VerificationStatus,
    VerificationStep,
)
