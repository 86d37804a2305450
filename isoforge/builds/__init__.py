"""Build jobs and artifacts.

This module handles:
- Job records and their append-only logs (models, jobs)
- The filesystem artifact store (storage)
- Artifact generation and validation (artifacts, validation)
- The external runner trigger (trigger)
- Orchestration of the build pipeline (service)
"""
