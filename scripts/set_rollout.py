import os
import sys
import asyncio
import json

# Add project root to sys.path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dotenv import load_dotenv

from rollout import RANGE_KEY
from rollout_config import RolloutSettings
from rollout_store import RedisRecordStore, make_dynamodb_client

# 사용법: python scripts/set_rollout.py 0.25
# 대상 backend/table/application은 rollout 서버와 같은 env를 쓴다.

async def main(value: float):
    if not (0.0 <= value <= 1.0):
        raise SystemExit(f"rollout must be in [0.0,1.0], got {value}")

    s = RolloutSettings.from_env()

    if s.backend == "redis":
        store = RedisRecordStore.from_url(s.redis_url)
        try:
            await store.put_rollout(s.table, s.application, value)
        finally:
            await store.close()
    elif s.backend == "dynamodb":
        client = make_dynamodb_client(s.aws_region)
        await asyncio.to_thread(
            client.put_item,
            TableName=s.table,
            Item={
                "application": {"S": s.application},
                "version": {"S": RANGE_KEY},
                "rollout": {"N": repr(value)},
            },
        )
    else:
        raise SystemExit("static backend has nothing to update (set ROLLOUT_STATIC_VALUE instead)")

    print(json.dumps({"action": "set", "backend": s.backend, "table": s.table, "application": s.application, "rollout": value}, ensure_ascii=False))

if __name__ == "__main__":
    load_dotenv()
    if len(sys.argv) != 2:
        raise SystemExit("usage: set_rollout.py <value>")
    asyncio.run(main(float(sys.argv[1])))
