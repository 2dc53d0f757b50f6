"""Orchestrator components: settings, logging, run registry, triggers and workflows."""
