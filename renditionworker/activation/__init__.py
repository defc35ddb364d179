"""Per-activation orchestration.

Submodules are imported directly (``from renditionworker.activation.orchestrator
import RenditionOrchestrator``); storage clients depend on ``metadata`` from here.
"""
