from .members import Member, LoyaltyBalance, FraudRiskScore
from .catalog import Category, PointRule, Reward, RuleKind
from .activity import Transaction, Redemption
from .audit import AuditLogEntry, EntityKind, AuditImmutableError
from .auth import User, SessionToken

__all__ = [
    'Member', 'LoyaltyBalance', 'FraudRiskScore',
    'Category', 'PointRule', 'Reward', 'RuleKind',
    'Transaction', 'Redemption',
    'AuditLogEntry', 'EntityKind', 'AuditImmutableError',
    'User', 'SessionToken',
]
