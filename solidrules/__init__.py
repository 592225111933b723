"""
SolidRules - Cursor rules catalog sync and workspace projection
"""

from solidrules.errors import SolidRulesError
from solidrules.manager import RulesManager
from solidrules.models import ProjectionConfig, RuleRecord

__version__ = "0.1.0"
__all__ = [
    "ProjectionConfig",
    "RuleRecord",
    "RulesManager",
    "SolidRulesError",
]
