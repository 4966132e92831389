"""
medscribe live transcript package.

Design intent:
- Turn a live microphone stream into a speaker-attributed consultation transcript.
- Keep the transcript pipeline (asr), runtime plumbing (internal_core) and device/network edges (live) separate.
"""
