"""
Annotation service: message-driven linguistic annotation over AMQP.

Packages:
- models: Document model and AnnotationResult wire format
- pipeline: annotator backends and ordered annotation stages
- coordinator: bounded pool of pipeline slots with timeouts
- messaging: kombu consumer, delivery acknowledgment, codec
- producer / aggregator / analysis: task fan-out and report fan-in
"""

__version__ = "0.1.0"
