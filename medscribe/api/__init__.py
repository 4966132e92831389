"""
API orchestration boundary for medscribe.

Design intent:
- Expose thin, typed endpoints for transcript ingestion and batch diarization.
- Keep request validation explicit and failure modes predictable.
- Orchestrate modules without embedding transcript logic in routers.
"""
