"""
Assignment Module
=================

Bounded Context for ticket routing and automation.

Responsibilities:
- Score candidate agents for a ticket (suitability ranking)
- Evaluate the prioritized automation rule table
- Assign new tickets and reassign tickets that breached their SLA
- Keep an append-only audit trail of decisions
- Hot-reload the automation rule table from YAML
"""

__version__ = "1.0.0"
