"""fake_dynamodb.py — In-memory stand-in for the low-level DynamoDB client.

Test-only. Implements the subset of get_item / put_item / query /
transact_write_items used by rescue_shared.store, including evaluation of
the condition and update expressions it emits, under a single lock so that
transactions are all-or-nothing across threads.
"""

from __future__ import annotations

import re
import threading
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError

_SER = TypeSerializer()
_DESER = TypeDeserializer()
_MISSING = object()
_TOKEN_RE = re.compile(r"\s*(<>|<=|>=|=|<|>|\(|\)|,|[#:]?[A-Za-z_][A-Za-z0-9_]*)")


def _tokenize(expr: str) -> List[str]:
    tokens: List[str] = []
    pos = 0
    expr = expr.strip()
    while pos < len(expr):
        m = _TOKEN_RE.match(expr, pos)
        if not m:
            raise ValueError(f"Cannot tokenize expression at: {expr[pos:]!r}")
        tokens.append(m.group(1))
        pos = m.end()
        while pos < len(expr) and expr[pos].isspace():
            pos += 1
    return tokens


class _Condition:
    def __init__(self, expr: str, names: Dict[str, str], values: Dict[str, Any], item: Dict[str, Any]):
        self.tokens = _tokenize(expr)
        self.pos = 0
        self.names = names
        self.values = values
        self.item = item

    def evaluate(self) -> bool:
        result = self._or()
        if self.pos != len(self.tokens):
            raise ValueError(f"Unexpected token {self.tokens[self.pos]!r}")
        return result

    def _peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> str:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def _expect(self, tok: str) -> None:
        got = self._next()
        if got != tok:
            raise ValueError(f"Expected {tok!r}, got {got!r}")

    def _or(self) -> bool:
        result = self._and()
        while (self._peek() or "").upper() == "OR":
            self._next()
            rhs = self._and()
            result = result or rhs
        return result

    def _and(self) -> bool:
        result = self._not()
        while (self._peek() or "").upper() == "AND":
            self._next()
            rhs = self._not()
            result = result and rhs
        return result

    def _not(self) -> bool:
        if (self._peek() or "").upper() == "NOT":
            self._next()
            return not self._not()
        return self._primary()

    def _primary(self) -> bool:
        tok = self._peek()
        if tok == "(":
            self._next()
            result = self._or()
            self._expect(")")
            return result
        if tok in ("attribute_exists", "attribute_not_exists"):
            self._next()
            self._expect("(")
            name = self._attr_name(self._next())
            self._expect(")")
            exists = name in self.item
            return exists if tok == "attribute_exists" else not exists
        if tok == "attribute_type":
            self._next()
            self._expect("(")
            name = self._attr_name(self._next())
            self._expect(",")
            wanted = self._operand(self._next())
            self._expect(")")
            if name not in self.item:
                return False
            (actual,) = _SER.serialize(self.item[name]).keys()
            return actual == wanted
        left = self._operand(self._next())
        op = self._next()
        right = self._operand(self._next())
        if left is _MISSING or right is _MISSING:
            return False
        if op == "=":
            return left == right
        if op == "<>":
            return left != right
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == ">=":
            return left >= right
        raise ValueError(f"Unsupported comparator {op!r}")

    def _attr_name(self, tok: str) -> str:
        return self.names[tok] if tok.startswith("#") else tok

    def _operand(self, tok: str) -> Any:
        if tok.startswith(":"):
            return self.values[tok]
        return self.item.get(self._attr_name(tok), _MISSING)


def _apply_update(item: Dict[str, Any], expr: str, names: Dict[str, str], values: Dict[str, Any]) -> None:
    parts = re.split(r"\b(SET|ADD|REMOVE)\b", expr)
    for keyword, clause in zip(parts[1::2], parts[2::2]):
        for action in (a.strip() for a in clause.split(",")):
            if not action:
                continue
            if keyword == "SET":
                path, value = (p.strip() for p in action.split("=", 1))
                item[names.get(path, path)] = values[value]
            elif keyword == "ADD":
                path, value = action.split()
                attr = names.get(path, path)
                item[attr] = item.get(attr, Decimal(0)) + values[value]
            else:
                item.pop(names.get(action, action), None)


def _client_error(code: str, operation: str, **extra: Any) -> ClientError:
    response: Dict[str, Any] = {"Error": {"Code": code, "Message": code}}
    response.update(extra)
    return ClientError(response, operation)


class FakeDynamoDB:
    """Tables of items keyed on (PK, SK), holding deserialized values."""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[Tuple[Any, Any], Dict[str, Any]]] = {}
        self.lock = threading.Lock()
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    # -- helpers ----------------------------------------------------------

    @staticmethod
    def _plain(raw: Dict[str, Any]) -> Dict[str, Any]:
        return {k: _DESER.deserialize(v) for k, v in raw.items()}

    @staticmethod
    def _wire(item: Dict[str, Any]) -> Dict[str, Any]:
        return {k: _SER.serialize(v) for k, v in item.items()}

    def _table(self, name: str) -> Dict[Tuple[Any, Any], Dict[str, Any]]:
        return self.tables.setdefault(name, {})

    @staticmethod
    def _key(key: Dict[str, Any]) -> Tuple[Any, Any]:
        return (key.get("PK"), key.get("SK"))

    def seed(self, table: str, item: Dict[str, Any]) -> None:
        """Insert a plain-Python item directly."""
        plain = {k: Decimal(v) if isinstance(v, int) and not isinstance(v, bool) else v for k, v in item.items()}
        self._table(table)[self._key(plain)] = plain

    def item(self, table: str, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        found = self._table(table).get((pk, sk))
        return dict(found) if found is not None else None

    def _check(self, params: Dict[str, Any], current: Dict[str, Any]) -> bool:
        expr = params.get("ConditionExpression")
        if not expr:
            return True
        values = self._plain(params.get("ExpressionAttributeValues") or {})
        names = params.get("ExpressionAttributeNames") or {}
        return _Condition(expr, names, values, current).evaluate()

    # -- client API -------------------------------------------------------

    def get_item(self, **params: Any) -> Dict[str, Any]:
        self.calls.append(("get_item", params))
        with self.lock:
            found = self._table(params["TableName"]).get(self._key(self._plain(params["Key"])))
            if found is None:
                return {}
            return {"Item": self._wire(found)}

    def put_item(self, **params: Any) -> Dict[str, Any]:
        self.calls.append(("put_item", params))
        with self.lock:
            new_item = self._plain(params["Item"])
            table = self._table(params["TableName"])
            key = self._key(new_item)
            if not self._check(params, table.get(key, {})):
                raise _client_error("ConditionalCheckFailedException", "PutItem")
            table[key] = new_item
            return {}

    def query(self, **params: Any) -> Dict[str, Any]:
        self.calls.append(("query", params))
        values = self._plain(params.get("ExpressionAttributeValues") or {})
        names = params.get("ExpressionAttributeNames") or {}
        with self.lock:
            rows = sorted(self._table(params["TableName"]).values(), key=lambda i: str(i.get("SK")))
            out = []
            for row in rows:
                if not _Condition(params["KeyConditionExpression"], names, values, row).evaluate():
                    continue
                flt = params.get("FilterExpression")
                if flt and not _Condition(flt, names, values, row).evaluate():
                    continue
                out.append(self._wire(row))
            return {"Items": out, "Count": len(out)}

    def transact_write_items(self, **params: Any) -> Dict[str, Any]:
        self.calls.append(("transact_write_items", params))
        items = params["TransactItems"]
        with self.lock:
            staged = []
            reasons = []
            failed = False
            for entry in items:
                (op, body), = entry.items()
                table = self._table(body["TableName"])
                key = self._key(self._plain(body["Key"]))
                current = dict(table.get(key, {}))
                if self._check(body, current):
                    reasons.append({"Code": "None"})
                    staged.append((op, body, table, key, current))
                else:
                    reasons.append({"Code": "ConditionalCheckFailed"})
                    failed = True
            if failed:
                raise _client_error(
                    "TransactionCanceledException",
                    "TransactWriteItems",
                    CancellationReasons=reasons,
                )
            for op, body, table, key, current in staged:
                if op != "Update":
                    raise ValueError(f"Unsupported transaction op {op}")
                values = self._plain(body.get("ExpressionAttributeValues") or {})
                names = body.get("ExpressionAttributeNames") or {}
                if not current:
                    current = {"PK": key[0], "SK": key[1]}
                _apply_update(current, body["UpdateExpression"], names, values)
                table[key] = current
            return {}
