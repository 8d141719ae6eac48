from pipeline.aggregator import Aggregator
from pipeline.stream import ItemSequence, RoundResult, SlotState, StreamMode, StreamScheduler

__all__ = [
    "Aggregator",
    "ItemSequence",
    "RoundResult",
    "SlotState",
    "StreamMode",
    "StreamScheduler",
]
