"""
FastAPI dependencies: services constructed once in the app lifespan and
handed to routes from ``app.state``
"""

from fastapi import Request

from core.config import Settings
from sync_engine.runner import SyncRunner
from sync_engine.scheduler import SyncScheduler


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_runner(request: Request) -> SyncRunner:
    return request.app.state.runner


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler


def get_background_tasks(request: Request) -> set:
    return request.app.state.background_tasks
