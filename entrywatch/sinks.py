from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from entrywatch.config import Settings
from entrywatch.csv_export import export_to_csv
from entrywatch.domain import AggregatedResult, SinkError
from entrywatch.slack_notifier import build_slack_message, post_to_slack

logger = logging.getLogger(__name__)


class Sink(Protocol):
    async def deliver(self, result: AggregatedResult) -> None: ...


class CsvSink:
    def __init__(self, path: str) -> None:
        self.path = path

    async def deliver(self, result: AggregatedResult) -> None:
        try:
            # csv + os.replace are blocking; keep them off the event loop.
            rows = await asyncio.to_thread(export_to_csv, result, self.path)
        except OSError as e:
            raise SinkError(f"Error writing CSV {self.path}: {e}") from e
        logger.info("Exported %d row(s) to %s", rows, self.path)


class SlackSink:
    def __init__(self, *, token: str, channel: str, client: httpx.AsyncClient | None = None) -> None:
        self.token = token
        self.channel = channel
        self._client = client

    async def deliver(self, result: AggregatedResult) -> None:
        text = build_slack_message(result)
        await post_to_slack(token=self.token, channel=self.channel, text=text, client=self._client)
        logger.info("Slack message posted to channel=%s (%d location(s))", self.channel, len(result))


def build_sink(settings: Settings, client: httpx.AsyncClient | None = None) -> Sink:
    if settings.enable_slack:
        return SlackSink(token=settings.slack_token, channel=settings.slack_channel_id, client=client)
    return CsvSink(settings.csv_path)
