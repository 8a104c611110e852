from enum import Enum


class AuthRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    CLIENT = "client"
    STAFF = "staff"
    RIDER = "rider"
    DRIVER = "driver"


class AuthProvider(str, Enum):
    PHONE = "phone"
    EMAIL = "email"
    PASSWORD = "password"
    GOOGLE = "google"
    APPLE = "apple"


OAUTH_PROVIDERS = (AuthProvider.GOOGLE, AuthProvider.APPLE)

# Lowest-privilege consumer role, used when an OAuth signup names none.
DEFAULT_ROLE = AuthRole.RIDER

APPLE_PRIVATE_RELAY_DOMAIN = "@privaterelay.appleid.com"

PROFILE_ACTIVE = "active"


def is_known_role(value: str | None) -> bool:
    return value in {r.value for r in AuthRole}
