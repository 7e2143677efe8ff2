"""
HTTP endpoint for incoming webmentions.

Every path and method lands on one handler so that the validator decides
the response:

- 202 Accepted      -> notification queued for verification
- 400 Bad Request   -> submission failed validation
- 500 Server Error  -> valid but not enqueueable, or processing failed

Usage:
    python main.py [mentions-file] [failures-file] [allowed-targets-file]
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import signal
import traceback

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exception_handlers import http_exception_handler
from starlette.exceptions import HTTPException as StarletteHTTPException

from webmention_receiver.config import Settings
from webmention_receiver.context import AppContext, build_context
from webmention_receiver.events import emit
from webmention_receiver.models import Submission
from webmention_receiver.validation import BAD_REQUEST_RULES, first_violation, parse_notification
from webmention_receiver.verifier import Verifier, build_http_client

ROUTED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS", "TRACE", "CONNECT"]
HTTP_METHOD_NOT_ALLOWED = 405


def _on_verifier_done(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        return
    emit("verifier_stopped", error=str(exc))
    print("".join(traceback.format_exception(exc)))
    # Storage is broken; shut the server down instead of accepting work we cannot record.
    signal.raise_signal(signal.SIGTERM)


def create_app(
    context: AppContext,
    *,
    http_client: httpx.AsyncClient | None = None,
    run_verifier: bool = True,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client or build_http_client(context)
        verifier = Verifier(context, client)
        app.state.verifier = verifier

        task: asyncio.Task | None = None
        if run_verifier:
            task = asyncio.create_task(verifier.run_forever())
            task.add_done_callback(_on_verifier_done)

        yield

        if task is not None:
            task.remove_done_callback(_on_verifier_done)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if http_client is None:
            await client.aclose()
        emit("receiver_stopped", queued=len(context.queue))

    app = FastAPI(
        title="Webmention Receiver",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.context = context

    @app.exception_handler(StarletteHTTPException)
    async def reject_unrouted_method(request: Request, exc: StarletteHTTPException) -> Response:
        # Methods outside ROUTED_METHODS fail the POST rule like any other non-POST.
        if exc.status_code == HTTP_METHOD_NOT_ALLOWED:
            if context.settings.debug:
                emit("request_rejected", violated_rule=0, rule=BAD_REQUEST_RULES[0].key, method=request.method)
            return Response(status_code=400)
        return await http_exception_handler(request, exc)

    @app.api_route("/{path:path}", methods=ROUTED_METHODS)
    async def receive(request: Request) -> Response:
        try:
            body = (await request.body()).decode("utf-8", errors="replace")
            submission = Submission(
                method=request.method,
                content_type=request.headers.get("content-type"),
                notification=parse_notification(body),
            )

            violation = first_violation(submission, context.allowed_targets)
            if violation is not None:
                if context.settings.debug:
                    emit(
                        "request_rejected",
                        violated_rule=violation,
                        rule=BAD_REQUEST_RULES[violation].key,
                        body=body[:500],
                    )
                return Response(status_code=400)

            notification = submission.notification
            reason = context.queue.rejection_reason(notification)
            if reason is not None or not context.queue.admit(notification):
                emit(
                    "mention_not_enqueued",
                    source=notification.source,
                    target=notification.target,
                    reason=reason,
                )
                return Response(status_code=500)

            emit(
                "mention_enqueued",
                source=notification.source,
                target=notification.target,
                queued=len(context.queue),
            )
            return Response(status_code=202)
        except Exception as exc:  # noqa: BLE001
            emit("request_failed", error=str(exc))
            print(traceback.format_exc())
            return Response(status_code=500)

    return app


def serve(settings: Settings) -> None:
    context = build_context(settings)
    emit(
        "receiver_start",
        host=settings.host,
        port=settings.port,
        stored=len(context.store),
        allowed_targets=len(context.allowed_targets),
    )
    app = create_app(context)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info" if settings.debug else "warning")
