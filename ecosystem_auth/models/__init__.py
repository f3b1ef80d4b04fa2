from ecosystem_auth.models.user import User
from ecosystem_auth.models.company import Company
from ecosystem_auth.models.user_company_access import UserCompanyAccess
from ecosystem_auth.models.invitation import Invitation
from ecosystem_auth.models.audit_log import AuditLog
from ecosystem_auth.models.login_attempt import LoginAttempt
from ecosystem_auth.models.gate_session import GateSession
from ecosystem_auth.models.allowed_email import AllowedEmail
from ecosystem_auth.models.revoked_token import RevokedToken
