from app.workers.tasks.access_maintenance import (
    deactivate_expired_access_rules,
    sweep_expired_access_grants,
)

__all__ = [
    "deactivate_expired_access_rules",
    "sweep_expired_access_grants",
]
