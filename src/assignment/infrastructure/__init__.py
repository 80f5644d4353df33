"""
Assignment Infrastructure Layer
================================

- External: hot-reloaded YAML automation rule table
"""

from src.assignment.infrastructure.external import AutomationRulesManager, RulesFileHandler

__all__ = ["AutomationRulesManager", "RulesFileHandler"]
