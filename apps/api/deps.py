from fastapi import Request

from cassconsole.service import MonitoringService


def get_service(request: Request) -> MonitoringService:
    """The process-wide monitoring service."""
    return request.app.state.service
