# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - jobs.py: enqueue, process trigger, stats, listing, operator recovery
#   - deps.py: trigger-secret check and queue component factories
# =============================================================================
