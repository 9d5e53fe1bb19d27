from app.db.models.access_grants import AccessGrant
from app.db.models.access_rules import AccessRule
from app.db.models.base import Base
from app.db.models.gated_resources import GatedResource
from app.db.models.ownership_records import OwnershipRecord
from app.db.models.user_wallets import UserWallet
from app.db.models.users import User

__all__ = [
    "AccessGrant",
    "AccessRule",
    "Base",
    "GatedResource",
    "OwnershipRecord",
    "User",
    "UserWallet",
]
