"""Projection of the active rule set onto a workspace."""

from .activation import ActivationController
from .projector import ProjectionReport, WorkspaceProjector

__all__ = ["ActivationController", "ProjectionReport", "WorkspaceProjector"]
