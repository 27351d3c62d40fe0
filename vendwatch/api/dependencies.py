"""Shared route dependencies"""

from fastapi import Request

from ..monitor import MonitorController


def get_controller(request: Request) -> MonitorController:
    return request.app.state.controller
