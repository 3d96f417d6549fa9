# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
#   - celery_app.py: Celery application configuration and beat schedule
#   - tasks.py: periodic dispatch of embedding jobs
#
# Celery beat is the time-based trigger for the dispatcher; POST
# /jobs/process is the on-demand one. Both may overlap safely.
# =============================================================================
