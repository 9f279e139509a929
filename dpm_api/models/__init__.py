from dpm_api.models.user import User, RoleEnum
from dpm_api.models.session import UserSession
from dpm_api.models.password_reset import PasswordReset
