"""
Account names, token quantities and JSON ABI definitions.

An Abi is the contract's JSON schema (structs + actions). decode_action()
checks action data against the struct bound to the action name and coerces
each declared field; it is how the signing-request engine tells a token
transfer from any other action.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

NAME_PATTERN = re.compile(r"^[a-z1-5.]{1,12}[a-j1-5]?$")
SYMBOL_PATTERN = re.compile(r"^[A-Z]{1,7}$")

TRANSFER_ACTION = "transfer"
TRANSFER_FIELDS = ("from", "to", "quantity", "memo")


def is_valid_name(name: str) -> bool:
    return bool(name) and len(name) <= 13 and bool(NAME_PATTERN.match(name)) and not name.endswith(".")


@dataclass(frozen=True)
class Asset:
    """Token quantity: integer units at a fixed precision, e.g. '1.0000 XPR'."""

    units: int
    precision: int
    symbol: str

    @property
    def amount(self) -> float:
        return float(self.decimal)

    @property
    def decimal(self) -> Decimal:
        return Decimal(self.units).scaleb(-self.precision)

    @classmethod
    def from_amount(cls, amount: float | Decimal | str, precision: int, symbol: str) -> "Asset":
        quantum = Decimal(1).scaleb(-precision)
        value = Decimal(str(amount)).quantize(quantum, rounding=ROUND_HALF_UP)
        return cls(units=int(value.scaleb(precision)), precision=precision, symbol=symbol)

    @classmethod
    def parse(cls, raw: str) -> "Asset":
        """Parse '12.3400 XPR'. precision is the number of decimals written."""
        parts = (raw or "").strip().split()
        if len(parts) != 2:
            raise ValueError(f"invalid asset: {raw!r}")
        amount_s, symbol = parts
        if not SYMBOL_PATTERN.match(symbol):
            raise ValueError(f"invalid asset symbol: {symbol!r}")
        precision = len(amount_s.split(".", 1)[1]) if "." in amount_s else 0
        try:
            value = Decimal(amount_s)
        except InvalidOperation as e:
            raise ValueError(f"invalid asset amount: {amount_s!r}") from e
        return cls(units=int(value.scaleb(precision)), precision=precision, symbol=symbol)

    def __str__(self) -> str:
        if self.precision == 0:
            return f"{self.units} {self.symbol}"
        return f"{self.decimal:.{self.precision}f} {self.symbol}"


def _coerce(type_name: str, value: Any) -> Any:
    base = type_name.rstrip("?")
    if value is None:
        if type_name.endswith("?"):
            return None
        raise ValueError(f"missing value for {type_name}")
    if base.endswith("[]"):
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"expected list for {type_name}")
        return [_coerce(base[:-2], v) for v in value]
    if base == "name":
        if not isinstance(value, str) or not is_valid_name(value):
            raise ValueError(f"invalid name: {value!r}")
        return value
    if base == "asset":
        return str(Asset.parse(str(value)))
    if base == "string":
        if not isinstance(value, str):
            raise ValueError(f"expected string, got {type(value).__name__}")
        return value
    if base == "bool":
        if not isinstance(value, bool):
            raise ValueError("expected bool")
        return value
    if base.startswith(("uint", "int", "varuint", "varint")):
        return int(value)
    if base.startswith("float"):
        return float(value)
    # checksum256, public_key, symbol, time_point, extended types: pass through
    return value


@dataclass(frozen=True)
class AbiStruct:
    name: str
    base: str = ""
    fields: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Abi:
    """JSON ABI for one contract account."""

    account_name: str
    structs: dict[str, AbiStruct] = field(default_factory=dict)
    actions: dict[str, str] = field(default_factory=dict)
    """action name -> struct type"""
    types: dict[str, str] = field(default_factory=dict)
    """type alias -> underlying type"""

    @classmethod
    def from_dict(cls, account_name: str, data: dict[str, Any]) -> "Abi":
        structs = {
            s["name"]: AbiStruct(
                name=s["name"],
                base=s.get("base", "") or "",
                fields=tuple((f["name"], f["type"]) for f in s.get("fields") or ()),
            )
            for s in data.get("structs") or ()
        }
        actions = {a["name"]: a["type"] for a in data.get("actions") or ()}
        types = {t["new_type_name"]: t["type"] for t in data.get("types") or ()}
        return cls(account_name=account_name, structs=structs, actions=actions, types=types)

    def _resolve(self, type_name: str) -> str:
        seen = set()
        while type_name in self.types and type_name not in seen:
            seen.add(type_name)
            type_name = self.types[type_name]
        return type_name

    def struct_fields(self, struct_name: str) -> list[tuple[str, str]]:
        struct = self.structs.get(self._resolve(struct_name))
        if struct is None:
            raise KeyError(struct_name)
        inherited = self.struct_fields(struct.base) if struct.base else []
        return inherited + [(n, self._resolve(t)) for n, t in struct.fields]

    def has_action(self, action_name: str) -> bool:
        return action_name in self.actions

    def decode_action(self, action_name: str, data: dict[str, Any]) -> dict[str, Any]:
        """Return data coerced to the action's struct. Raises ValueError/KeyError on mismatch."""
        if action_name not in self.actions:
            raise KeyError(f"{self.account_name} has no action {action_name}")
        if not isinstance(data, dict):
            raise ValueError("action data must be an object")
        decoded: dict[str, Any] = {}
        for field_name, field_type in self.struct_fields(self.actions[action_name]):
            decoded[field_name] = _coerce(field_type, data.get(field_name))
        return decoded

    def is_token_transfer(self, action_name: str) -> bool:
        """True when the action is the standard token transfer (from, to, quantity, memo)."""
        if action_name != TRANSFER_ACTION or action_name not in self.actions:
            return False
        try:
            fields = dict(self.struct_fields(self.actions[action_name]))
        except KeyError:
            return False
        return (
            fields.get("from") == "name"
            and fields.get("to") == "name"
            and fields.get("quantity") == "asset"
            and fields.get("memo") == "string"
        )
