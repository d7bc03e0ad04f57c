"""
Queue adapter: AMQP consumption, decoding, acknowledgment and publishing.

- codec: inbound validation (DecodeError) and outbound encoding
- delivery: settle-once acknowledgment scope
- redelivery: attempt counting across redeliveries
- handler: delivery <-> coordinator outcome mapping
- broker: kombu topology, connection and result publisher
- consumer: kombu ConsumerMixin worker
"""
from .codec import InboundMessage, decode_document, decode_message, encode_request, encode_result
from .delivery import Delivery, DeliveryAlreadySettled, Disposition
from .handler import MessageHandler, PendingDocument, failed_result
from .redelivery import RedeliveryTracker, header_attempt

__all__ = [
    'InboundMessage',
    'decode_document',
    'decode_message',
    'encode_request',
    'encode_result',
    'Delivery',
    'DeliveryAlreadySettled',
    'Disposition',
    'MessageHandler',
    'PendingDocument',
    'failed_result',
    'RedeliveryTracker',
    'header_attempt',
]
