from app.db.repo.access_grants_repo import AccessGrantsRepo
from app.db.repo.access_rules_repo import AccessRulesRepo
from app.db.repo.ownership_records_repo import OwnershipRecordsRepo
from app.db.repo.resources_repo import ResourcesRepo
from app.db.repo.users_repo import UsersRepo

__all__ = [
    "AccessGrantsRepo",
    "AccessRulesRepo",
    "OwnershipRecordsRepo",
    "ResourcesRepo",
    "UsersRepo",
]
