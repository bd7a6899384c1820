"""Shared NATS JetStream consumer for the ingest jobs.

Provides run_consumer() - the main entry point for a job. Connects to NATS
JetStream, pulls messages from a durable consumer, dispatches each one to the
handler registered for its subject, and manages acks/nacks. Core NATS
request/reply responders can be registered alongside; their subjects must not
be captured by the stream, or JetStream's publish ack races the responder's
reply. Includes a health check HTTP server on :8080.

The job supplies a lifespan: an async context manager factory called with
(nc, publish) that builds the job's services, yields a ConsumerApp, and tears
the services down on exit.
"""

import asyncio
import json
import logging
import os
import signal
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import nats
from aiohttp import web

logger = logging.getLogger(__name__)

HANDLER_TIMEOUT = 300
NAK_DELAY = 30

Publish = Callable[[str, dict], Awaitable[None]]
Handler = Callable[[dict, Publish], Awaitable[Any]]
Responder = Callable[[dict], Awaitable[dict]]


@dataclass
class ConsumerApp:
    handlers: dict[str, Handler]
    responders: dict[str, Responder] = field(default_factory=dict)


async def _health_handler(request):
    return web.Response(text="OK")


async def _run_health_server():
    app = web.Application()
    app.router.add_get("/health", _health_handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", 8080)
    await site.start()
    return runner


async def process_message(msg, handlers: dict[str, Handler], publish: Publish):
    """Run the handler for one JetStream message and settle it.

    ValueError (which includes ValidationError) terminates the message since
    redelivery cannot fix bad input; any other failure or a timeout naks it.
    """
    handler = handlers.get(msg.subject)
    if handler is None:
        logger.error(f"No handler registered for {msg.subject}, terminating message")
        await msg.term()
        return

    try:
        await msg.in_progress()
        data = json.loads(msg.data.decode())
        logger.info(f"Processing message on {msg.subject}")
        await asyncio.wait_for(handler(data, publish), timeout=HANDLER_TIMEOUT)
        await msg.ack()
        logger.info("Message processed and acked")
    except asyncio.TimeoutError:
        logger.error("Handler timed out after 5 minutes, nacking")
        await msg.nak(delay=NAK_DELAY)
    except ValueError as e:
        logger.warning(f"Rejected message on {msg.subject}: {e}")
        await msg.term()
    except Exception:
        logger.exception("Handler failed, nacking message")
        await msg.nak(delay=NAK_DELAY)


def make_responder_callback(responder: Responder):
    """Wrap a responder as a core NATS subscription callback."""

    async def _callback(msg):
        try:
            data = json.loads(msg.data.decode())
            result = await responder(data)
        except ValueError as e:
            result = {"error": str(e)}
        except Exception:
            logger.exception(f"Responder for {msg.subject} failed")
            result = {"error": "internal error"}
        await msg.respond(json.dumps(result).encode())

    return _callback


async def _run(lifespan, job_name, concurrency, subject_filter):
    nats_url = os.environ.get("NATS_URL", "nats://localhost:4222")
    stream = os.environ.get("NATS_STREAM", "media-events")
    consumer_name = os.environ.get("NATS_CONSUMER", f"{job_name}-consumer")
    subject_filter = os.environ.get("NATS_SUBJECT_FILTER", subject_filter)

    logging.basicConfig(level=logging.INFO)
    logger.info(f"Starting {job_name} consumer (stream={stream}, consumer={consumer_name}, filter={subject_filter})")

    health_runner = await _run_health_server()
    logger.info("Health check server running on :8080")

    nc = await nats.connect(nats_url)
    js = nc.jetstream()

    async def publish(subject: str, data: dict):
        payload = json.dumps(data).encode()
        await js.publish(subject, payload)
        logger.info(f"Published to {subject}")

    shutdown = asyncio.Event()

    def _signal_handler():
        logger.info("Received shutdown signal")
        shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _signal_handler)

    async with lifespan(nc, publish) as app:
        responder_subs = []
        for subject, responder in app.responders.items():
            sub = await nc.subscribe(subject, queue=f"{job_name}-responders",
                                     cb=make_responder_callback(responder))
            responder_subs.append(sub)
            logger.info(f"Responding on {subject}")

        sub = await js.pull_subscribe(
            subject_filter,
            durable=consumer_name,
            stream=stream,
        )

        logger.info(f"Pulling messages (concurrency={concurrency})...")

        while not shutdown.is_set():
            try:
                msgs = await sub.fetch(batch=concurrency, timeout=5)
            except nats.errors.TimeoutError:
                continue

            for msg in msgs:
                await process_message(msg, app.handlers, publish)

        logger.info("Shutting down...")
        await sub.unsubscribe()
        for responder_sub in responder_subs:
            await responder_sub.unsubscribe()

    await nc.drain()
    await health_runner.cleanup()
    logger.info("Shutdown complete")


def run_consumer(lifespan, job_name, concurrency=1, subject_filter="media.>"):
    """Main entry point. Blocks until SIGTERM/SIGINT."""
    asyncio.run(_run(lifespan, job_name, concurrency, subject_filter))
