"""
Assignment Interfaces Layer
===========================

FastAPI route handlers for assignment and automation.
"""

from src.assignment.interfaces.controllers import assignment_router, automation_router

__all__ = ["assignment_router", "automation_router"]
