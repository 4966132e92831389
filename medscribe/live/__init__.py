"""
Live recording boundary for medscribe.

Design intent:
- Own device capture and the streaming channel lifecycle.
- Feed recognition results into the transcript pipeline without blocking capture.
- Hand the finished recording to the batch diarization pass.
"""
