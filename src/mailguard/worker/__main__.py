"""
Worker subprocess entry point.

Run as ``python -m mailguard.worker``. Control messages travel as JSON lines
on stdin/stdout; logs go to stderr.
"""

import asyncio
import os
import sys
from pathlib import Path

import structlog

from mailguard.channel.port import StreamPort
from mailguard.config import settings
from mailguard.llm.base_engine import load_engine_factory
from mailguard.llm.prompt_builder import PromptBuilder
from mailguard.logging_config import bind_worker_context, configure_logging
from mailguard.worker.proxy import InferenceWorkerProxy
from mailguard.worker.runtime import WorkerRuntime

STREAM_LIMIT = 16 * 1024 * 1024

logger = structlog.get_logger(__name__)


async def open_stdio_port() -> StreamPort:
    """Wrap this process's stdin/stdout as a StreamPort."""
    loop = asyncio.get_running_loop()

    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

    transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, sys.stdout)
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return StreamPort("worker-stdio", reader, writer)


async def serve() -> None:
    engine_factory = load_engine_factory(settings.WORKER_ENGINE)
    prompt_builder = PromptBuilder(templates_dir=Path(settings.PROMPT_TEMPLATES_DIR))
    proxy = InferenceWorkerProxy(
        engine=engine_factory(),
        system_prompt=prompt_builder.build_system_prompt(),
        settings=settings,
    )
    port = await open_stdio_port()
    await WorkerRuntime(port, proxy).run()


def main() -> None:
    configure_logging(settings.LOG_LEVEL, settings.ENVIRONMENT, stream=sys.stderr)
    bind_worker_context(worker_pid=os.getpid())
    logger.info("Worker process starting", models_dir=settings.MODELS_DIR, engine=settings.WORKER_ENGINE)
    asyncio.run(serve())


if __name__ == "__main__":
    main()
