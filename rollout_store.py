from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence

from redis.asyncio import Redis

# 레코드 속성은 타입 태그 하나짜리 dict로 표현한다.
#   {"N": "0.35"}  숫자 (10진 문자열)
#   {"S": "canary"}  문자열
AttributeValue = Mapping[str, Any]
Record = Mapping[str, AttributeValue]


class RecordStore(Protocol):
    """
    원격 key/value 레코드 저장소의 point lookup 인터페이스.
    요청한 속성 중 레코드에 없는 것은 결과에서 빠진다.
    """

    async def get_item(
        self,
        table: str,
        key: Mapping[str, str],
        attributes: Sequence[str],
        consistent: bool = True,
    ) -> Record:
        ...


class DynamoDBRecordStore:
    """
    boto3 DynamoDB client를 감싼 RecordStore.
    client는 동기 API라 worker thread에서 호출한다.
    """

    def __init__(self, client):
        self.client = client

    def _request(self, table: str, key: Mapping[str, str], attributes: Sequence[str], consistent: bool) -> Dict[str, Any]:
        # 예약어 충돌을 피하려고 expression attribute name 사용
        names = {f"#a{i}": attr for i, attr in enumerate(attributes)}
        return {
            "TableName": table,
            "Key": {k: {"S": v} for k, v in key.items()},
            "ProjectionExpression": ", ".join(names.keys()),
            "ExpressionAttributeNames": names,
            "ConsistentRead": consistent,
        }

    async def get_item(
        self,
        table: str,
        key: Mapping[str, str],
        attributes: Sequence[str],
        consistent: bool = True,
    ) -> Record:
        params = self._request(table, key, attributes, consistent)
        resp = await asyncio.to_thread(self.client.get_item, **params)
        # 레코드가 아예 없으면 "Item" 키가 없다
        return resp.get("Item") or {}


def make_dynamodb_client(region: str = "us-east-1", timeout: int = 5):
    """
    boto3 dynamodb client 생성. 테스트에서 모킹하기 쉽도록 분리.
    """
    import boto3
    from botocore.config import Config

    config = Config(
        region_name=region,
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"max_attempts": 2, "mode": "standard"},
    )
    return boto3.client("dynamodb", config=config)


def _decode_attribute(raw: str) -> AttributeValue:
    try:
        obj = json.loads(raw)
    except ValueError:
        return {"S": raw}
    if isinstance(obj, dict) and len(obj) == 1:
        return obj
    # 타입 태그가 없는 값(예: redis-cli로 직접 넣은 0.35)은 문자열 취급
    return {"S": raw}


class RedisRecordStore:
    """
    Redis hash를 레코드로 쓰는 RecordStore.
    key: "{table}:{hash}:{range}", field: 속성 이름, value: JSON 타입 속성
    """

    def __init__(self, redis: Redis):
        self.redis = redis

    @classmethod
    def from_url(cls, url: str) -> "RedisRecordStore":
        return cls(Redis.from_url(url, decode_responses=True))

    @staticmethod
    def record_key(table: str, key: Mapping[str, str]) -> str:
        return ":".join([table, *key.values()])

    async def get_item(
        self,
        table: str,
        key: Mapping[str, str],
        attributes: Sequence[str],
        consistent: bool = True,
    ) -> Record:
        # 단일 primary 읽기이므로 consistent 플래그는 항상 만족됨
        attributes = list(attributes)
        vals = await self.redis.hmget(self.record_key(table, key), attributes)

        item: Dict[str, AttributeValue] = {}
        for attr, v in zip(attributes, vals):
            if v is None:
                continue
            if isinstance(v, bytes):
                v = v.decode("utf-8")
            item[attr] = _decode_attribute(v)
        return item

    async def put_rollout(self, table: str, application: str, value: float, version: str = "canary") -> None:
        k = self.record_key(table, {"application": application, "version": version})
        await self.redis.hset(k, "rollout", json.dumps({"N": repr(float(value))}))

    async def close(self) -> None:
        await self.redis.aclose()


def describe_store(store: Optional[RecordStore]) -> str:
    if store is None:
        return "none"
    return type(store).__name__
