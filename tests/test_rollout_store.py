import asyncio
import json
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rollout import parse_rollout
from rollout_store import DynamoDBRecordStore, RedisRecordStore, describe_store

KEY = {"application": "checkout", "version": "canary"}

class FakeDynamoClient:
    def __init__(self, resp):
        self.resp = resp
        self.calls = []

    def get_item(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.resp, Exception):
            raise self.resp
        return self.resp

class FakeRedis:
    def __init__(self):
        self.hashes = {}

    async def hmget(self, key, fields):
        h = self.hashes.get(key, {})
        return [h.get(f) for f in fields]

    async def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value
        return 1

def test_dynamodb_request_is_consistent_projection():
    client = FakeDynamoClient({"Item": {"rollout": {"N": "0.35"}}})
    store = DynamoDBRecordStore(client)

    item = asyncio.run(store.get_item("rollouts", KEY, ["rollout"], consistent=True))

    assert item == {"rollout": {"N": "0.35"}}
    assert client.calls == [{
        "TableName": "rollouts",
        "Key": {"application": {"S": "checkout"}, "version": {"S": "canary"}},
        "ProjectionExpression": "#a0",
        "ExpressionAttributeNames": {"#a0": "rollout"},
        "ConsistentRead": True,
    }]

def test_dynamodb_missing_item_is_empty_record():
    store = DynamoDBRecordStore(FakeDynamoClient({"ResponseMetadata": {}}))
    assert asyncio.run(store.get_item("rollouts", KEY, ["rollout"])) == {}

def test_dynamodb_client_error_propagates():
    store = DynamoDBRecordStore(FakeDynamoClient(RuntimeError("throttled")))
    try:
        asyncio.run(store.get_item("rollouts", KEY, ["rollout"]))
    except RuntimeError as e:
        assert "throttled" in str(e)
    else:
        raise AssertionError("expected RuntimeError")

def test_redis_put_then_get_roundtrip_parses():
    store = RedisRecordStore(FakeRedis())

    async def go():
        await store.put_rollout("rollouts", "checkout", 0.35)
        return await store.get_item("rollouts", KEY, ["rollout"])

    item = asyncio.run(go())
    assert item == {"rollout": {"N": "0.35"}}
    assert parse_rollout(item) == 0.35
    assert "rollouts:checkout:canary" in store.redis.hashes

def test_redis_missing_field_is_absent():
    store = RedisRecordStore(FakeRedis())
    assert asyncio.run(store.get_item("rollouts", KEY, ["rollout"])) == {}

def test_redis_untyped_values_decode_as_strings():
    fake = FakeRedis()
    fake.hashes["rollouts:checkout:canary"] = {"rollout": "0.35"}
    store = RedisRecordStore(fake)
    assert asyncio.run(store.get_item("rollouts", KEY, ["rollout"])) == {"rollout": {"S": "0.35"}}

    fake.hashes["rollouts:checkout:canary"] = {"rollout": json.dumps({"N": "abc"})}
    assert asyncio.run(store.get_item("rollouts", KEY, ["rollout"])) == {"rollout": {"N": "abc"}}

def test_describe_store():
    assert describe_store(None) == "none"
    assert describe_store(RedisRecordStore(FakeRedis())) == "RedisRecordStore"
