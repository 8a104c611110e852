from ridefleet.models.user import User
from ridefleet.models.credential import AuthCredential
from ridefleet.models.role import Permission, Role, RolePermission, UserRole
from ridefleet.models.profile import UserProfile
from ridefleet.models.refresh_token import RefreshToken
from ridefleet.models.audit_log import AuditLog
