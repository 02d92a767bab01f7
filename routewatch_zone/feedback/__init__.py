"""
Feedback Layer
==============

Bounded Context: What the walking person hears/feels while off route.

Responsibilities:
- Alarm cue stream (until dismissed)
- Directional cue stream (turn + steps)
- Cancellation on return to route
"""

from routewatch_zone.feedback.scheduler import Cue, CueKind, FeedbackScheduler

__all__ = [
    "Cue",
    "CueKind",
    "FeedbackScheduler",
]
