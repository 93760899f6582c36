"""Access condition descriptions.

Conditions are evaluated by the threshold network (or the local encryption
service), never by the storage layer. They are modelled here only so that
callers can build the common cases and so they serialize to the JSON shape
the network understands.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from taco_storage.errors import InvalidConfigError

# Polygon Amoy testnet
DEFAULT_CONDITION_CHAIN_ID = 80002

USER_ADDRESS_PARAM = ":userAddress"

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


class _ConditionModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class ReturnValueTest(_ConditionModel):
    """Comparison applied to the value a condition method returns."""

    comparator: Literal["==", "!=", ">", "<", ">=", "<="]
    value: Any


class TimeCondition(_ConditionModel):
    """Access allowed while the chain's block time satisfies the test."""

    condition_type: Literal["time"] = Field(default="time", alias="conditionType")
    chain: int
    method: Literal["blocktime"] = "blocktime"
    return_value_test: ReturnValueTest = Field(alias="returnValueTest")


class ContractCondition(_ConditionModel):
    """Access allowed based on a token contract call (ownership checks)."""

    condition_type: Literal["contract"] = Field(default="contract", alias="conditionType")
    contract_address: str = Field(alias="contractAddress")
    chain: int
    standard_contract_type: str = Field(default="ERC721", alias="standardContractType")
    method: str
    parameters: list[Any] = Field(default_factory=list)
    return_value_test: ReturnValueTest = Field(alias="returnValueTest")


Condition = TimeCondition | ContractCondition


def is_valid_address(address: str) -> bool:
    """Check for a 0x-prefixed, 20-byte hex address."""
    return bool(_ADDRESS_PATTERN.match(address))


def create_time_condition(
    expires_at: datetime,
    *,
    chain: int = DEFAULT_CONDITION_CHAIN_ID,
    now: datetime | None = None,
) -> TimeCondition:
    """Create a condition granting access until ``expires_at``.

    Raises:
        InvalidConfigError: If expires_at is not in the future.
    """
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    current = now or datetime.now(UTC)
    if expires_at <= current:
        raise InvalidConfigError("End time must be in the future")

    return TimeCondition(
        chain=chain,
        return_value_test=ReturnValueTest(
            comparator="<=",
            value=int(expires_at.timestamp()),
        ),
    )


def create_ownership_condition(
    contract_address: str,
    token_id: str | int | None = None,
    *,
    chain: int = DEFAULT_CONDITION_CHAIN_ID,
) -> ContractCondition:
    """Create an ERC-721 ownership condition.

    With a token id the caller must own that token; without one the caller
    must hold at least one token of the contract.

    Raises:
        InvalidConfigError: If contract_address is malformed.
    """
    if not isinstance(contract_address, str) or not is_valid_address(contract_address):
        raise InvalidConfigError("Invalid contract address", key=str(contract_address))

    if token_id is not None:
        try:
            token = int(token_id)
        except (TypeError, ValueError) as e:
            raise InvalidConfigError("Invalid token id", key=str(token_id), cause=e) from e
        return ContractCondition(
            contract_address=contract_address,
            chain=chain,
            method="ownerOf",
            parameters=[token],
            return_value_test=ReturnValueTest(comparator="==", value=USER_ADDRESS_PARAM),
        )

    return ContractCondition(
        contract_address=contract_address,
        chain=chain,
        method="balanceOf",
        parameters=[USER_ADDRESS_PARAM],
        return_value_test=ReturnValueTest(comparator=">", value=0),
    )


def condition_to_dict(condition: Any) -> Any:
    """Convert a condition to its JSON form; other values pass through."""
    if isinstance(condition, BaseModel):
        return condition.model_dump(by_alias=True, mode="json")
    return condition


def condition_from_dict(data: Any) -> Any:
    """Rebuild a known condition model, leaving unknown shapes untouched."""
    if not isinstance(data, dict):
        return data
    condition_type = data.get("conditionType")
    if condition_type == "time":
        return TimeCondition.model_validate(data)
    if condition_type == "contract":
        return ContractCondition.model_validate(data)
    return data
