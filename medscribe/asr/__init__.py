"""
Transcript pipeline module boundary for medscribe.

Design intent:
- Keep result ingestion, segmentation and speaker attribution pure and synchronous.
- Keep transport and device concerns out of transcript construction.
- Return timestamped utterances for downstream consumers.
"""
