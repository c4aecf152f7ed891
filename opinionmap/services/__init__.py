"""Opinion map services.

- progress_service: gates every student-facing mutation
- analytics_service: anonymized aggregation and the opinion map
"""
