"""Database models for the workflow automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.actor_profile import ActorProfile
from db.models.analytics_event import AnalyticsEvent
from db.models.workflow_definition import WorkflowDefinition, WorkflowDefinitionVersion
from db.models.workflow_run import WorkflowRun, WorkflowRunStep
from db.models.dead_letter import WorkflowDeadLetter
from db.models.notification import Notification
from db.models.partner import PartnerSubmission, PartnerIncentiveApplication, PartnerContract
from db.models.messaging_request import MessagingRequest

__all__ = [
    "ActorProfile",
    "AnalyticsEvent",
    "WorkflowDefinition",
    "WorkflowDefinitionVersion",
    "WorkflowRun",
    "WorkflowRunStep",
    "WorkflowDeadLetter",
    "Notification",
    "PartnerSubmission",
    "PartnerIncentiveApplication",
    "PartnerContract",
    "MessagingRequest",
]
