from datetime import timedelta

DEFAULT_GRANT_TTL = timedelta(hours=1)
GRANT_TOKEN_BYTES = 32
GRANT_TOKEN_MAX_ATTEMPTS = 3
GRANT_ISSUE_MAX_ATTEMPTS = 3
GRANT_UNTITLED_RESOURCE = "Untitled Resource"
GRANT_DEFAULT_RESOURCE_TYPE = "content"

OWNER_GRANT_REASON = "RESOURCE_OWNER"
ADMIN_GRANT_REASON = "ADMIN_ROLE"
PUBLIC_GRANT_REASON = "PUBLIC_RESOURCE"
NFT_GRANT_REASON = "NFT_OWNERSHIP"

ADMIN_ROLE = "ADMIN"

RULE_ERROR_KIND_CONFLICT = "resource_kind_conflict"

DENY_REASON_NO_RULES = "no_rules_defined"
DENY_REASON_NO_WALLETS = "no_wallets_linked"
DENY_REASON_NO_MATCH = "no_matching_ownership"
DENY_REASON_RESTRICTIONS = "restrictions_exhausted"
UNAVAILABLE_REASON_VERIFICATION = "verification_unavailable"
TIMEOUT_REASON_DEADLINE = "deadline_exceeded"

RESTRICTION_MAX_VIEWS = "max_views"
RESTRICTION_MAX_DOWNLOADS = "max_downloads"
RESTRICTION_DEVICE_LIMIT = "device_limit"
RESTRICTION_IP = "ip_restriction"
RESTRICTION_PRESENCE = "requires_presence"

WALLET_NFT_PAGE_LIMIT = 100
SPL_TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
