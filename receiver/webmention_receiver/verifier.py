from __future__ import annotations

import asyncio
import traceback

import httpx

from webmention_receiver.context import AppContext
from webmention_receiver.events import emit
from webmention_receiver.models import (
    STATUS_FAILED,
    STATUS_GONE,
    STATUS_VERIFIED,
    Notification,
    Outcome,
)

HTTP_GONE = 410


class BodyTooLarge(Exception):
    pass


def build_http_client(context: AppContext, **kwargs) -> httpx.AsyncClient:
    settings = context.settings
    return httpx.AsyncClient(
        timeout=settings.request_timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
        **kwargs,
    )


class Verifier:
    """Drains the admission queue one notification per tick.

    The mention check is a plain substring test of the target URL against
    the fetched body. Incidental text matches count as mentions and links
    written in another form (relative, entity-encoded) do not.
    """

    def __init__(self, context: AppContext, http_client: httpx.AsyncClient) -> None:
        self.context = context
        self._client = http_client

    async def _fetch(self, url: str) -> tuple[int, str | None]:
        """Return the status code and, for 2xx responses, the decoded body."""
        max_bytes = self.context.settings.max_body_bytes
        async with self._client.stream("GET", url) as response:
            if not response.is_success:
                return response.status_code, None

            chunks: list[bytes] = []
            size = 0
            async for chunk in response.aiter_bytes():
                size += len(chunk)
                if size > max_bytes:
                    raise BodyTooLarge(f"body exceeds {max_bytes} bytes")
                chunks.append(chunk)
            return response.status_code, b"".join(chunks).decode(
                response.encoding or "utf-8", errors="replace"
            )

    async def check(self, notification: Notification) -> Outcome:
        deadline = self.context.settings.request_timeout_seconds
        try:
            # The client timeout applies per network operation; this bounds the whole fetch.
            status, body = await asyncio.wait_for(self._fetch(notification.source), deadline)
            if body is not None:
                return Outcome(
                    status=STATUS_VERIFIED,
                    checked_at=self.context.clock(),
                    mentioned=notification.target in body,
                )
            if status == HTTP_GONE:
                return Outcome(status=STATUS_GONE, checked_at=self.context.clock())
            error = f"unexpected status {status}"
        except TimeoutError:
            error = f"fetch exceeded {deadline}s deadline"
        except Exception as exc:  # noqa: BLE001
            error = f"{type(exc).__name__}: {exc}"

        return Outcome(status=STATUS_FAILED, checked_at=self.context.clock(), error=error)

    def record(self, notification: Notification, outcome: Outcome) -> None:
        if outcome.status == STATUS_FAILED:
            failures = self.context.failures.increment(notification.source)
            self.context.failures.persist()
            emit(
                "mention_failed",
                source=notification.source,
                target=notification.target,
                failures=failures,
                error=outcome.error,
            )
            return

        self.context.store.upsert(notification, outcome)
        self.context.store.persist()
        if outcome.status == STATUS_GONE:
            emit("mention_deleted", source=notification.source, target=notification.target)
        else:
            emit(
                "mention_verified",
                source=notification.source,
                target=notification.target,
                mentioned=outcome.mentioned,
            )

    async def process_next(self) -> Outcome | None:
        notification = self.context.queue.pop()
        if notification is None:
            return None

        outcome = await self.check(notification)
        self.record(notification, outcome)
        return outcome

    async def run_forever(self) -> None:
        interval = self.context.settings.verify_interval_seconds
        emit("verifier_start", interval_seconds=interval)
        while True:
            try:
                await self.process_next()
            except OSError:
                # Storage write failures are not masked.
                raise
            except Exception as exc:  # noqa: BLE001
                emit("verifier_tick_failed", error=str(exc))
                print(traceback.format_exc())
            await asyncio.sleep(interval)
