"""
Example usage of the Redis Streams engine.

Produces a few rows, consumes them through a consumer group and shows the
table-level API that runs one consumer per configured name.
"""

from stream_engine import (
    ConsumerGroupManager,
    ConsumerIdentity,
    ReadEngine,
    RedisBroker,
    StreamTable,
    WriteEngine,
    load_settings,
)

BROKER = "localhost:6379"


def write_example():
    """Append framed rows to a stream."""
    print("=== Write ===")

    broker = RedisBroker({"broker": BROKER})
    # two rows per stream entry; a trailing delimiter keeps rows separable
    with WriteEngine(broker, "quotes", delimiter=",", rows_per_message=2) as w:
        w.write_row(b"symbol,AAPL,price,150.5,")
        w.write_row(b"symbol,MSFT,price,300.5,")
        w.write_row(b"symbol,NVDA,price,875.0,")
    print(f"Appended ids: {[str(i) for i in w.appended_ids]}")
    broker.close()


def read_example():
    """Poll, iterate and acknowledge by hand."""
    print("\n=== Read ===")

    broker = RedisBroker({"broker": BROKER, "socket_timeout": 11})
    ConsumerGroupManager(broker).ensure(["quotes"], "example", "0")

    reader = ReadEngine(
        broker,
        ConsumerIdentity(group="example", consumer="reader-1"),
        ["quotes"],
        poll_batch_size=100,
        claim_batch_size=100,
        poll_timeout_ms=1000,
    )
    while reader.poll():
        for msg in reader:
            print(f"{msg.virtual_columns()} {msg.payload}")
        print(f"Acked {reader.ack()} messages")
    print(f"Status: {reader.status.value}")
    broker.close()


def table_example():
    """Consume through StreamTable with two consumers."""
    print("\n=== Table ===")

    settings = load_settings(
        {
            "redis_broker": BROKER,
            "redis_stream_list": "quotes",
            "redis_group_name": "table-example",
            "redis_common_consumer_id": "node",
            "redis_num_consumers": 2,
            "redis_manage_consumer_groups": True,
            "redis_consumer_groups_start_id": "0",
            "redis_poll_timeout_ms": 500,
        }
    )

    def insert(consumer, block):
        print(f"{consumer}: {len(block)} rows")

    with StreamTable(settings) as table:
        total = table.consume(insert)
    print(f"Consumed {total} messages")


if __name__ == "__main__":
    write_example()
    read_example()
    table_example()

    print("\n=== Examples Complete ===")
