"""Lookup services: name matching, registry linking and office resolution.

Modules are imported directly (``from contractes.services.registry_service
import ...``); this package does not re-export them because the models
module depends on the pure name helpers defined here.
"""
