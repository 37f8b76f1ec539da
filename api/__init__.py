"""Local HTTP API for the PatientVault storage engine."""

__version__ = "0.1.0"
