from .collection import JsonCollection
from .participants import ParticipantStore

__all__ = ["JsonCollection", "ParticipantStore"]
