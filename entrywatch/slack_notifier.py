from __future__ import annotations

import httpx

from entrywatch.domain import AggregatedResult, FatalSinkError, SinkError

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

# Slack errors that will not go away on the next cycle.
FATAL_SLACK_ERRORS = frozenset(
    {"invalid_auth", "not_authed", "token_revoked", "token_expired", "account_inactive", "channel_not_found"}
)
SUMMARY_LIMIT = 5


def build_slack_message(result: AggregatedResult, limit: int = SUMMARY_LIMIT) -> str:
    if result.is_empty:
        text = "No Global Entry appointments found."
    else:
        parts = ["*Global Entry Availability*\n\n"]
        for i, item in enumerate(result.locations[:limit], start=1):
            loc = item.location
            parts.append(
                f"{i}. (Date: {item.date.isoformat()}) *{loc.name}* (ID: {loc.id}) in {loc.city}, {loc.state}\n"
                f"Address: {loc.address} {loc.address_additional or ''}\n"
                f"Zip: {loc.postal_code}\n"
                f"Phone: {loc.phone_number or 'N/A'}\n\n"
            )
        if len(result) > limit:
            parts.append(f"...and {len(result) - limit} more.\n")
        text = "".join(parts)

    if result.failures:
        failed = ", ".join(d.isoformat() for d in sorted(result.failures))
        text = f"{text.rstrip()}\n\n_Could not check: {failed}_"

    return text


async def post_to_slack(
    *,
    token: str,
    channel: str,
    text: str,
    client: httpx.AsyncClient | None = None,
    timeout_seconds: float = 20.0,
) -> None:
    payload = {
        "channel": channel,
        "text": text,
    }
    headers = {"Authorization": f"Bearer {token}"}

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout_seconds) as own_client:
                r = await own_client.post(SLACK_POST_MESSAGE_URL, json=payload, headers=headers)
        else:
            r = await client.post(SLACK_POST_MESSAGE_URL, json=payload, headers=headers, timeout=timeout_seconds)
        r.raise_for_status()
        data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        raise SinkError(f"Slack request failed: {type(e).__name__}: {e}") from e

    if not data.get("ok", False):
        error = data.get("error") or "Slack unknown error"
        if error in FATAL_SLACK_ERRORS:
            raise FatalSinkError(f"Slack API error: {error}")
        raise SinkError(f"Slack API error: {error}")
