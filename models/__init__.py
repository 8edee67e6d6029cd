"""Models package."""

from .user import User
from .credit_transaction import CreditTransaction
from .template_unlock import TemplateUnlock
from .system_settings import SystemSettings
