"""Auto-analyze service for conversational sessions.

This service orchestrates the complete analysis pipeline:
- Progressive time-window sampling of sessions
- Transcript retrieval for the sampled sessions
- Bounded-concurrency batch analysis with an inference model
- Aggregation of per-session facts into a report
"""

__version__ = "1.0.0"
