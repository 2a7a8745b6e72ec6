"""Shared router dependencies."""

from __future__ import annotations

from fastapi import Request

from src.brain_proxy import Orchestrator


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator
