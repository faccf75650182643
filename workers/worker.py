"""Worker for the document confidence pipeline.

Runs against Temporal, listens for tasks and executes the document
workflow and its activities.

The activities need the deployment's stores and posting delegate, which
this repo does not own. The worker therefore loads a caller-supplied
factory, given as "package.module:callable". The worker builds Settings
once with load_settings() (defaults, .env, environment overrides) and
calls factory(settings); the factory returns a DocumentActivities
instance wired with those thresholds:

    python workers/worker.py --factory myapp.wiring:build_document_activities

The factory may be sync or async. DOCUMENT_ACTIVITIES_FACTORY is used when
--factory is omitted.
"""

import argparse
import asyncio
import importlib
import inspect
import os
import sys
from pathlib import Path
from typing import Callable

from temporalio.client import Client
from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from activities.documents import DocumentActivities
from core.config import Settings, load_settings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.document_workflow import DocumentPostingWorkflow, TASK_QUEUE


logger = get_logger(__name__)

FACTORY_ENV_VAR = "DOCUMENT_ACTIVITIES_FACTORY"


def load_factory(path: str) -> Callable:
    """Import "package.module:callable".

    Raises:
        ValueError: If the path is malformed or does not name a callable
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Factory must look like 'package.module:callable', got {path!r}")

    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"{path} is not callable")
    return factory


async def build_activities(factory: Callable, settings: Settings) -> DocumentActivities:
    """Call factory(settings), awaiting it when async, and check what it returned."""
    acts = factory(settings)
    if inspect.isawaitable(acts):
        acts = await acts
    if not isinstance(acts, DocumentActivities):
        raise TypeError(
            f"Factory returned {type(acts).__name__}, expected DocumentActivities"
        )
    return acts


def create_worker(
    client: Client,
    acts: DocumentActivities,
    task_queue: str = TASK_QUEUE,
) -> Worker:
    """Worker polling task_queue with the document workflow and bound activities."""
    return Worker(
        client,
        task_queue=task_queue,
        workflows=[DocumentPostingWorkflow],
        activities=[acts.resolve_receipt_lines, acts.attempt_auto_post],
    )


async def run_worker(factory_path: str, task_queue: str = TASK_QUEUE):
    """Start worker listening on the task queue.

    Args:
        factory_path: "package.module:callable" returning DocumentActivities
        task_queue: Queue to poll

    Raises:
        Exception: If the factory fails or the connection to Temporal fails
    """
    try:
        settings = load_settings()
        acts = await build_activities(load_factory(factory_path), settings)

        client = await get_temporal_client()
        logger.info(f"Connected to Temporal: {client.namespace}")

        worker = create_worker(client, acts, task_queue)
        logger.info(
            f"Worker created for queue '{task_queue}'",
            extra_fields={"factory": factory_path},
        )

        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()

    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="Document Pipeline Temporal Worker")
    parser.add_argument(
        "--factory", "-f",
        default=os.getenv(FACTORY_ENV_VAR),
        help=f"'package.module:callable' returning DocumentActivities (default: ${FACTORY_ENV_VAR})",
    )
    parser.add_argument(
        "--queue", "-q",
        default=TASK_QUEUE,
        help=f"Task queue to poll (default: {TASK_QUEUE})",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit structured JSON logs",
    )

    args = parser.parse_args()
    if not args.factory:
        parser.error(f"--factory or {FACTORY_ENV_VAR} is required")

    configure_logging(json_format=args.json_logs)
    asyncio.run(run_worker(args.factory, task_queue=args.queue))


if __name__ == "__main__":
    main()
