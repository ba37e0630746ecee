from __future__ import annotations

import json
import sys
from typing import Optional

import typer
from loguru import logger

from .errors import StreamEngineError
from .groups import ConsumerGroupManager
from .models import ConsumerIdentity
from .reader import ReadEngine
from .source import StreamSource
from .transport import RedisBroker
from .writer import WriteEngine

app = typer.Typer(help="Redis Streams engine operational CLI")

# ---------------------------
# Common options
# ---------------------------


def broker_opt() -> str:
    return typer.Option(
        "localhost:6379", "--broker", envvar="REDIS_STREAMS_BROKER", help="host:port or redis:// URL"
    )


def password_opt() -> str:
    return typer.Option("", "--password", envvar="REDIS_STREAMS_PASSWORD", help="Redis password")


def group_opt() -> str:
    return typer.Option(..., "--group", envvar="REDIS_STREAMS_GROUP_NAME", help="Consumer group")


def _broker(broker: str, password: str, poll_timeout_ms: int = 0) -> RedisBroker:
    return RedisBroker(
        {
            "broker": broker,
            "password": password or None,
            "socket_timeout": None if poll_timeout_ms == 0 else poll_timeout_ms / 1000 + 10,
        }
    )


def _split(streams: str) -> list[str]:
    return [s.strip() for s in streams.split(",") if s.strip()]


def _fail(e: Exception) -> None:
    logger.error(f"{type(e).__name__}: {e}")
    raise typer.Exit(code=1)


# ---------------------------
# Admin
# ---------------------------


@app.command("ping")
def ping(broker: str = broker_opt(), password: str = password_opt()):
    b = _broker(broker, password)
    try:
        ok = b.ping()
    except StreamEngineError as e:
        _fail(e)
    finally:
        b.close()
    typer.echo(json.dumps({"ok": ok}, indent=2))


@app.command("create-group")
def create_group(
    streams: str = typer.Argument(..., help="Comma-separated stream names"),
    group: str = group_opt(),
    start_id: str = typer.Option("$", "--start-id", help="First id the group will read after"),
    broker: str = broker_opt(),
    password: str = password_opt(),
):
    b = _broker(broker, password)
    try:
        created = ConsumerGroupManager(b).ensure(_split(streams), group, start_id)
    except StreamEngineError as e:
        _fail(e)
    finally:
        b.close()
    typer.echo(json.dumps({"created": created}, indent=2))


@app.command("drop-group")
def drop_group(
    streams: str = typer.Argument(..., help="Comma-separated stream names"),
    group: str = group_opt(),
    broker: str = broker_opt(),
    password: str = password_opt(),
):
    b = _broker(broker, password)
    try:
        dropped = ConsumerGroupManager(b).drop(_split(streams), group)
    except StreamEngineError as e:
        _fail(e)
    finally:
        b.close()
    typer.echo(json.dumps({"dropped": dropped}, indent=2))


@app.command("pending")
def pending(
    stream: str = typer.Argument(...),
    group: str = group_opt(),
    min_idle_ms: int = typer.Option(0, "--min-idle-ms"),
    count: int = typer.Option(100, "--count"),
    broker: str = broker_opt(),
    password: str = password_opt(),
):
    b = _broker(broker, password)
    try:
        rows = b.list_pending(stream, group, min_idle_ms, count)
    except StreamEngineError as e:
        _fail(e)
    finally:
        b.close()
    for r in rows:
        row = r.model_dump()
        row["entry_id"] = str(r.entry_id)
        typer.echo(json.dumps(row, default=str))


# ---------------------------
# Consume / produce
# ---------------------------


@app.command("tail")
def tail(
    streams: str = typer.Argument(..., help="Comma-separated stream names"),
    group: str = group_opt(),
    consumer: str = typer.Option(
        ..., "--consumer", envvar="REDIS_STREAMS_COMMON_CONSUMER_ID", help="Consumer name"
    ),
    max_blocks: int = typer.Option(1, "--max-blocks", help="Stop after N blocks (0 = forever)"),
    max_block_size: int = typer.Option(1000, "--max-block-size"),
    poll_timeout_ms: int = typer.Option(1000, "--poll-timeout-ms"),
    claim_batch_size: int = typer.Option(0, "--claim-batch-size"),
    min_time_for_claim_ms: int = typer.Option(10_000, "--min-time-for-claim-ms"),
    broker: str = broker_opt(),
    password: str = password_opt(),
):
    """Print messages as JSON lines; acks each block after it was printed."""
    b = _broker(broker, password, poll_timeout_ms)
    reader = ReadEngine(
        b,
        ConsumerIdentity(group=group, consumer=consumer),
        _split(streams),
        claim_batch_size=claim_batch_size,
        poll_timeout_ms=poll_timeout_ms,
        min_time_for_claim_ms=min_time_for_claim_ms,
    )
    source = StreamSource(
        reader,
        max_block_size=max_block_size,
        flush_interval_ms=max(poll_timeout_ms, 1),
        ack_on_select=False,
    )
    blocks = 0
    try:
        while max_blocks == 0 or blocks < max_blocks:
            block = source.read_block()
            for msg in block:
                row = msg.virtual_columns()
                row["payload"] = msg.payload
                typer.echo(json.dumps(row, ensure_ascii=False))
            source.commit()
            blocks += 1
    except StreamEngineError as e:
        _fail(e)
    finally:
        b.close()


@app.command("produce")
def produce(
    stream: str = typer.Argument(...),
    delimiter: Optional[str] = typer.Option(None, "--delimiter", help="Field delimiter"),
    rows_per_message: int = typer.Option(1, "--rows-per-message"),
    max_message_bytes: int = typer.Option(0, "--max-message-bytes"),
    broker: str = broker_opt(),
    password: str = password_opt(),
):
    """Append stdin lines to a stream (one row per line)."""
    b = _broker(broker, password)
    # rows of one message stay separable
    row_end = delimiter.encode("utf-8") if delimiter else b"\n"
    try:
        with WriteEngine(
            b,
            stream,
            delimiter=delimiter,
            rows_per_message=rows_per_message,
            max_message_bytes=max_message_bytes,
        ) as w:
            for line in sys.stdin.buffer:
                w.write_row(line.rstrip(b"\r\n") + row_end)
        appended = len(w.appended_ids)
    except StreamEngineError as e:
        _fail(e)
    finally:
        b.close()
    typer.echo(json.dumps({"stream": stream, "entries": appended}, indent=2))


if __name__ == "__main__":
    app()
