"""HTTP service mode for orgdocs."""

from .app import create_app, orchestrator_factory_for, run_service

__all__ = ["create_app", "orchestrator_factory_for", "run_service"]
