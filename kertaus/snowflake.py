import os

from snowflake import SnowflakeGenerator


# Instances sharing a Redis must run with distinct WORKER_ID values
generator = SnowflakeGenerator(int(os.getenv("WORKER_ID", "1")))


def new_card_id() -> int:
    card_id = next(generator)
    if card_id is None:
        raise RuntimeError("Snowflake generator exhausted for this millisecond")
    return card_id
