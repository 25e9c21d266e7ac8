"""Dependency functions handing the app's coordinators to routes."""

from fastapi import Request

from barback.core.grants import GrantWorkflow
from barback.core.notifications import NotificationHub
from barback.core.sessions import SessionRegistry


def get_grant_workflow(request: Request) -> GrantWorkflow:
    return request.app.state.grants


def get_notification_hub(request: Request) -> NotificationHub:
    return request.app.state.notifications


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions
