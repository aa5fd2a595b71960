"""hrflow — leave & attendance approval core for the payroll/HR platform."""

__version__ = "1.0.0"
