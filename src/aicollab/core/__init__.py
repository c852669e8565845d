"""Core: the Collaborator dispatcher."""

from aicollab.core.collaborator import Collaborator, ConnectionResult, Credentials

__all__ = ["Collaborator", "ConnectionResult", "Credentials"]
