"""Orchestration exports."""

from teleshell.core.bootstrap import build_client_factory, build_orchestrator, build_pipeline
from teleshell.core.orchestrator import MessageResult, Orchestrator

__all__ = ["MessageResult", "Orchestrator", "build_client_factory", "build_orchestrator", "build_pipeline"]
