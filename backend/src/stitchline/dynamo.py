"""
DynamoDB implementation of the transactional store adapter.

Batches become TransactWriteItems calls, CAS becomes a version-stamped
conditional PutItem, and subscriptions are DynamoDB Streams feeding the
stream-triggered handlers.
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple

import boto3
from boto3.dynamodb.conditions import Attr, Key
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import config
from .logging import logger
from .store import (
    MISSING,
    BaseStore,
    Delete,
    Put,
    StoreUnavailable,
    TransactionConflict,
    Update,
)

# DynamoDB limit on items per TransactWriteItems call
MAX_TRANSACT_ITEMS = 100

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _serializer.serialize(v) for k, v in item.items()}


def deserialize_image(image: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a stream record image ({'S': ...} values) into plain Python."""
    return {k: _deserializer.deserialize(v) for k, v in (image or {}).items()}


class _Expression:
    """Accumulates placeholder names/values for one expression set."""

    def __init__(self):
        self.names: Dict[str, str] = {}
        self.values: Dict[str, Any] = {}

    def name(self, field: str) -> str:
        placeholder = f"#n{len(self.names)}"
        self.names[placeholder] = field
        return placeholder

    def value(self, value: Any) -> str:
        placeholder = f":v{len(self.values)}"
        self.values[placeholder] = value
        return placeholder


def _condition(expr: _Expression, key_attr: str, expect: Dict[str, Any],
               must_exist: bool = False, must_not_exist: bool = False) -> Optional[str]:
    clauses = []
    if must_exist:
        clauses.append(f"attribute_exists({expr.name(key_attr)})")
    if must_not_exist:
        clauses.append(f"attribute_not_exists({expr.name(key_attr)})")
    for field, expected in expect.items():
        if expected is MISSING:
            clauses.append(f"attribute_not_exists({expr.name(field)})")
        else:
            clauses.append(f"{expr.name(field)} = {expr.value(expected)}")
    return ' AND '.join(clauses) if clauses else None


def build_update_expression(op: Update) -> Tuple[str, Optional[str], _Expression]:
    """Translate an Update op into (UpdateExpression, ConditionExpression, placeholders)."""
    expr = _Expression()
    set_parts = [f"{expr.name(f)} = {expr.value(v)}" for f, v in op.set_values.items()]
    add_parts = [f"{expr.name(f)} {expr.value(v)}" for f, v in op.add_values.items()]
    add_parts += [f"{expr.name(f)} {expr.value(set(m))}" for f, m in op.add_members.items() if m]
    add_parts.append(f"{expr.name('version')} {expr.value(1)}")
    delete_parts = [f"{expr.name(f)} {expr.value(set(m))}" for f, m in op.remove_members.items() if m]
    remove_parts = [expr.name(f) for f in op.remove_fields]

    sections = []
    if set_parts:
        sections.append('SET ' + ', '.join(set_parts))
    if remove_parts:
        sections.append('REMOVE ' + ', '.join(remove_parts))
    sections.append('ADD ' + ', '.join(add_parts))
    if delete_parts:
        sections.append('DELETE ' + ', '.join(delete_parts))

    key_attr = next(iter(op.key))
    condition = _condition(expr, key_attr, op.expect, must_exist=op.must_exist)
    return ' '.join(sections), condition, expr


class DynamoStore(BaseStore):
    """Store adapter backed by DynamoDB tables."""

    def __init__(self, key_schema: Dict[str, Sequence[str]], max_attempts: int = 25,
                 resource=None, client=None):
        super().__init__(key_schema, max_attempts)
        # Standard retry mode retries throttling and transient network errors;
        # conditional failures are never retried by botocore.
        boto_config = BotoConfig(retries={'max_attempts': config.STORE_MAX_RETRIES, 'mode': 'standard'})
        self.resource = resource or boto3.resource('dynamodb', region_name=config.AWS_REGION, config=boto_config)
        self.client = client or boto3.client('dynamodb', region_name=config.AWS_REGION, config=boto_config)

    def _table(self, name: str):
        return self.resource.Table(name)

    def get(self, table, key):
        try:
            response = self._table(table).get_item(Key=key, ConsistentRead=True)
            return response.get('Item')
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error getting item from {table}: {e}")
            raise StoreUnavailable(str(e)) from e

    def query(self, table, field, value, index_name=None):
        params = {'KeyConditionExpression': Key(field).eq(value)}
        if index_name:
            params['IndexName'] = index_name
        return self._paginate(self._table(table).query, table, params)

    def scan(self, table, conditions=None):
        params = {}
        filter_expression = None
        for field, expected in (conditions or {}).items():
            if isinstance(expected, (list, tuple, set)):
                clause = Attr(field).is_in(list(expected))
            else:
                clause = Attr(field).eq(expected)
            filter_expression = clause if filter_expression is None else filter_expression & clause
        if filter_expression is not None:
            params['FilterExpression'] = filter_expression
        return self._paginate(self._table(table).scan, table, params)

    def _paginate(self, call, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        items = []
        try:
            while True:
                response = call(**params)
                items.extend(response.get('Items', []))
                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    return items
                params['ExclusiveStartKey'] = last_key
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading {table}: {e}")
            raise StoreUnavailable(str(e)) from e

    def put(self, op):
        key_attr = self.key_schema[op.table][0]
        expr = _Expression()
        condition = _condition(expr, key_attr, op.expect,
                               must_exist=op.must_exist, must_not_exist=op.if_not_exists)
        item = dict(op.item)
        item.setdefault('version', 1)
        params = {'Item': item}
        if condition:
            params['ConditionExpression'] = condition
            params['ExpressionAttributeNames'] = expr.names
            if expr.values:
                params['ExpressionAttributeValues'] = expr.values
        try:
            self._table(op.table).put_item(**params)
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise TransactionConflict(f"Conditional put on {op.table} failed") from e
            logger.error(f"Error writing to {op.table}: {e}")
            raise StoreUnavailable(str(e)) from e
        except BotoCoreError as e:
            raise StoreUnavailable(str(e)) from e

    def to_transact_item(self, op) -> Dict[str, Any]:
        """Build one TransactItems entry in the low-level attribute format."""
        if isinstance(op, Put):
            key_attr = self.key_schema[op.table][0]
            expr = _Expression()
            condition = _condition(expr, key_attr, op.expect,
                                   must_exist=op.must_exist, must_not_exist=op.if_not_exists)
            item = dict(op.item)
            item.setdefault('version', 1)
            entry = {'TableName': op.table, 'Item': serialize_item(item)}
            kind = 'Put'
        elif isinstance(op, Update):
            update_expression, condition, expr = build_update_expression(op)
            entry = {
                'TableName': op.table,
                'Key': serialize_item(op.key),
                'UpdateExpression': update_expression,
            }
            kind = 'Update'
        elif isinstance(op, Delete):
            expr = _Expression()
            condition = _condition(expr, next(iter(op.key)), op.expect, must_exist=op.must_exist)
            entry = {'TableName': op.table, 'Key': serialize_item(op.key)}
            kind = 'Delete'
        else:
            raise TypeError(f"Unsupported write operation: {op!r}")

        if condition:
            entry['ConditionExpression'] = condition
        if expr.names:
            entry['ExpressionAttributeNames'] = expr.names
        if expr.values:
            entry['ExpressionAttributeValues'] = serialize_item(expr.values)
        return {kind: entry}

    def commit(self, writes):
        if not writes:
            return
        if len(writes) > MAX_TRANSACT_ITEMS:
            raise ValueError(f"Batch of {len(writes)} exceeds {MAX_TRANSACT_ITEMS} items")

        transact_items = [self.to_transact_item(op) for op in writes]
        try:
            self.client.transact_write_items(TransactItems=transact_items)
        except ClientError as e:
            error_code = e.response['Error']['Code']
            if error_code == 'TransactionCanceledException':
                # Cancellation reasons correspond to the TransactItems list order
                reasons = [r.get('Code', 'None') for r in e.response.get('CancellationReasons', [])]
                raise TransactionConflict('Transaction cancelled', reasons=reasons) from e
            logger.error(f"Transaction failed ({error_code}): {e}")
            raise StoreUnavailable(str(e)) from e
        except BotoCoreError as e:
            logger.error(f"Transaction failed: {e}")
            raise StoreUnavailable(str(e)) from e
