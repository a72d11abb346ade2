from fastapi import Request

from runtrack.core.config import Settings
from runtrack.integrations.location import PushLocationProvider
from runtrack.services.run_history import RunHistoryStore
from runtrack.services.run_session import RunSessionController


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_controller(request: Request) -> RunSessionController:
    return request.app.state.run_controller


def get_history(request: Request) -> RunHistoryStore:
    return request.app.state.run_controller.history


def get_location_provider(request: Request) -> PushLocationProvider:
    return request.app.state.location_provider
