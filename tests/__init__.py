"""
Annotation Service - Test Suite

Test modules organized by functionality:
- unit/models/    - Document model mutators, result wire format
- unit/pipeline/  - Stages, pipeline runs, annotator backends
- unit/messaging/ - Codec, delivery scope, handler, kombu consumer
- unit/utils/     - Dead-letter ledger, resource tracker, backend sharing
- unit/           - Coordinator, config, producer, aggregator, CLI
"""
