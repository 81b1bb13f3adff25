"""Work channels between the poller and the two pipeline stages."""

from filemover.messaging.channel import (
    GENERATION_CHANNEL,
    TRANSFER_CHANNEL,
    Channel,
    Delivery,
)
from filemover.messaging.memory import InMemoryChannel
from filemover.messaging.messages import GenerationRequest, TargetRef, TransferRequest

__all__ = [
    "GENERATION_CHANNEL",
    "TRANSFER_CHANNEL",
    "Channel",
    "Delivery",
    "GenerationRequest",
    "InMemoryChannel",
    "TargetRef",
    "TransferRequest",
]
