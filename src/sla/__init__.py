"""
SLA Monitoring Module
=====================

Bounded Context for Service Level Agreement definitions and breach tracking.

Responsibilities:
- Compute response and resolution deadlines from ticket creation
- Detect breaches, record breach episodes and alert assignees
- SLA CRUD, live breaching view and compliance statistics
- Daily compliance report for administrators
- Ticket store, notification transport and job scheduler

Endpoints:
- GET/POST /slas, GET/PUT/DELETE /slas/{id}
- GET /slas/breaching
- GET /slas/statistics
"""

__version__ = "1.0.0"
