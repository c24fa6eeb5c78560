"""Tracking of analysed CI/CD build failures, Jira tickets and MTTR behind a JSON API."""

__version__ = "0.1.0"