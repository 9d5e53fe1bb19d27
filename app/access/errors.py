class AccessError(Exception):
    pass


class AccessNotFoundError(AccessError):
    pass


class AccessUserNotFoundError(AccessNotFoundError):
    pass


class AccessResourceNotFoundError(AccessNotFoundError):
    pass


class AccessGrantNotFoundError(AccessNotFoundError):
    pass


class InvalidAccessLevelError(AccessError):
    pass


class InvalidAccessRuleError(AccessError):
    pass


class AccessRuleForbiddenError(AccessError):
    pass


class VerificationUnavailableError(AccessError):
    def __init__(self, token_address: str, wallet_address: str, reasons: dict[str, str]) -> None:
        super().__init__(f"ownership of {token_address} by {wallet_address} could not be verified")
        self.token_address = token_address
        self.wallet_address = wallet_address
        self.reasons = reasons


class ConflictingIssuanceError(AccessError):
    pass


class GrantTokenCollisionError(AccessError):
    pass


class GrantLevelConflictError(AccessError):
    def __init__(self, active_level: str, requested_level: str) -> None:
        super().__init__(f"live grant at {active_level} does not cover {requested_level}")
        self.active_level = active_level
        self.requested_level = requested_level
