"""Core HR module — employee directory model and lookups."""

from hr_leave.core_hr.models import Employee

__all__ = ["Employee"]
