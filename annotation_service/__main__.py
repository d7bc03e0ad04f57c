"""
CLI entry point for the annotation service.

Usage:
    # Consume annotation.tasks, publish to annotation.results
    python -m annotation_service worker
    python -m annotation_service worker --pool-size 4 --share-backend

    # Split text files into sentence chunks and publish them as tasks
    python -m annotation_service produce data/books/
    python -m annotation_service produce data/books/moby.txt --sentences-per-task 20

    # Consume results and write one report per completed task
    python -m annotation_service aggregate --report-dir reports/

    # Annotate locally, no broker involved
    python -m annotation_service annotate story.txt
    echo "Alice met Bob." | python -m annotation_service annotate - --stats
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path

from annotation_service.config import settings

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=settings.logging.format,
    )


# ---------------------------------------------------------------------------
# worker
# ---------------------------------------------------------------------------

def _run_worker(args: argparse.Namespace) -> int:
    from annotation_service.coordinator import PipelineCoordinator
    from annotation_service.messaging.broker import create_connection
    from annotation_service.messaging.consumer import AnnotationWorker
    from annotation_service.utils.worker_pool import init_annotator_backend, pipeline_factory

    coordinator_config = settings.coordinator.model_copy(update={
        key: value for key, value in (
            ('pool_size', args.pool_size),
            ('queue_capacity', args.queue_capacity),
            ('timeout', args.timeout),
        ) if value is not None
    })
    pipeline_settings = settings.pipeline
    if args.share_backend:
        pipeline_settings = pipeline_settings.model_copy(update={'share_backend': True})

    # Models are loaded before the first message is consumed
    if pipeline_settings.share_backend:
        init_annotator_backend(pipeline_settings=pipeline_settings)

    coordinator = PipelineCoordinator(
        pipeline_factory(pipeline_settings),
        config=coordinator_config,
    )
    with coordinator, create_connection() as connection:
        worker = AnnotationWorker(
            connection,
            coordinator,
            coordinator_config=coordinator_config,
        )

        def _stop(signum, frame):
            worker.shutdown()

        signal.signal(signal.SIGTERM, _stop)
        signal.signal(signal.SIGINT, _stop)
        worker.run()

    logger.info("Worker exited: %s", worker.handler.counts)
    return 0


# ---------------------------------------------------------------------------
# produce
# ---------------------------------------------------------------------------

def _run_produce(args: argparse.Namespace) -> int:
    from kombu import Producer

    from annotation_service.messaging.broker import Topology, create_connection
    from annotation_service.producer import TaskProducer
    from annotation_service.utils.worker_pool import create_backend

    backend = create_backend()
    topology = Topology()
    with create_connection() as connection:
        producer = TaskProducer(
            Producer(connection.default_channel),
            topology,
            backend,
            sentences_per_task=args.sentences_per_task,
        )
        published = producer.publish_path(args.path)

    for task_id, chunks in published.items():
        print(f"{task_id}\t{chunks} chunk(s)")
    return 0


# ---------------------------------------------------------------------------
# aggregate
# ---------------------------------------------------------------------------

def _run_aggregate(args: argparse.Namespace) -> int:
    from annotation_service.aggregator import AggregatorWorker, ResultAggregator
    from annotation_service.messaging.broker import create_connection

    aggregator = ResultAggregator(top_n=args.top_n, report_dir=args.report_dir)
    with create_connection() as connection:
        worker = AggregatorWorker(connection, aggregator)

        def _stop(signum, frame):
            worker.should_stop = True

        signal.signal(signal.SIGTERM, _stop)
        signal.signal(signal.SIGINT, _stop)
        worker.run()

    if aggregator.open_tasks:
        logger.warning(
            "Exiting with %d incomplete task(s): %s",
            len(aggregator.open_tasks), ", ".join(aggregator.open_tasks),
        )
    return 0


# ---------------------------------------------------------------------------
# annotate
# ---------------------------------------------------------------------------

def _run_annotate(args: argparse.Namespace) -> int:
    from annotation_service.analysis import analyze
    from annotation_service.errors import DocumentFailed
    from annotation_service.models import Document
    from annotation_service.pipeline import build_pipeline
    from annotation_service.utils.worker_pool import create_backend

    if args.input == '-':
        text, document_id = sys.stdin.read(), args.id or "stdin"
    else:
        path = Path(args.input)
        text, document_id = path.read_text(encoding='utf-8'), args.id or path.stem

    pipeline = build_pipeline(create_backend())
    exit_code = 0
    try:
        result = pipeline.run(Document(id=document_id, text=text))
    except DocumentFailed as exc:
        logger.error("Annotation failed: %s", exc)
        result = exc.result
        exit_code = 1

    output = result.to_message()
    if args.stats:
        stats = analyze(result, text)
        output['statistics'] = {
            'word_count': stats.word_count,
            'top_words': stats.top_words(settings.aggregator.top_n),
            'redacted_text': stats.redacted_text,
            'sorted_sentences': stats.sorted_sentences,
            'sentiment': {
                'positive_sentences': stats.positive_sentences,
                'negative_sentences': stats.negative_sentences,
            },
        }
        output['stage_timings'] = result.stage_timings
    print(json.dumps(output, indent=2 if args.pretty else None, ensure_ascii=False))
    return exit_code


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog='annotation_service',
        description="Message-driven NLP annotation: ssplit -> tokenize -> pos -> ner [-> parse]",
    )
    ap.add_argument('--log-level', default=None, help=f'Logging level (default: {settings.logging.level})')
    sub = ap.add_subparsers(dest='command', required=True)

    worker = sub.add_parser('worker', help='Consume tasks and publish annotation results')
    worker.add_argument('--pool-size', type=int, default=None,
                        help=f'Pipeline slots (default: {settings.coordinator.pool_size})')
    worker.add_argument('--queue-capacity', type=int, default=None,
                        help=f'Admitted documents waiting for a slot (default: {settings.coordinator.queue_capacity})')
    worker.add_argument('--timeout', type=float, default=None,
                        help=f'Seconds per document (default: {settings.coordinator.timeout})')
    worker.add_argument('--share-backend', action='store_true',
                        help='Load one model for all slots behind a lock')
    worker.set_defaults(func=_run_worker)

    produce = sub.add_parser('produce', help='Publish text files as chunked tasks')
    produce.add_argument('path', help='.txt file or directory of .txt files')
    produce.add_argument('--sentences-per-task', type=int, default=None,
                         help=f'Sentences per message (default: {settings.producer.sentences_per_task})')
    produce.set_defaults(func=_run_produce)

    aggregate = sub.add_parser('aggregate', help='Collect results into per-task reports')
    aggregate.add_argument('--top-n', type=int, default=None,
                           help=f'Most frequent words per report (default: {settings.aggregator.top_n})')
    aggregate.add_argument('--report-dir', type=str, default=None,
                           help=f'Report directory (default: {settings.aggregator.report_dir})')
    aggregate.set_defaults(func=_run_aggregate)

    annotate = sub.add_parser('annotate', help='Annotate a file (or - for stdin) locally')
    annotate.add_argument('input', help='Text file path, or - for stdin')
    annotate.add_argument('--id', default=None, help='Document id (default: file stem)')
    annotate.add_argument('--stats', action='store_true', help='Add text statistics to the output')
    annotate.add_argument('--pretty', action='store_true', help='Indent JSON output')
    annotate.set_defaults(func=_run_annotate)
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level or settings.logging.level)
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
