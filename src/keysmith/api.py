import inspect
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable

import structlog

from keysmith.errors import (
    AdminKeyMissingError,
    AlreadyExistsError,
    KeysmithError,
    NoKeysAvailableError,
    NotFoundError,
    UpstreamError,
)
from keysmith.models import CostRecord, KeyInfo
from keysmith.service import KeyManager

logger = structlog.get_logger()

# error code reported to callers for each failure type
ERROR_CODES: "list[tuple[type[KeysmithError], str]]" = [
    (AlreadyExistsError, "AlreadyExists"),
    (NotFoundError, "NotFound"),
    (NoKeysAvailableError, "NoKeysAvailable"),
    (AdminKeyMissingError, "AdminKeyMissing"),
    (UpstreamError, "Upstream"),
]


def error_code(error: "KeysmithError") -> "str":
    for error_type, code in ERROR_CODES:
        if isinstance(error, error_type):
            return code
    return "Error"


def _timestamp(value: "datetime | None") -> "int":
    return int(value.timestamp()) if value is not None else 0


def _amount(value: "Decimal") -> "float":
    return float(value)


def _cost(record: "CostRecord") -> "dict[str, Any]":
    return {
        "timestamp": _timestamp(record.incurred_at),
        "amount": _amount(record.amount),
        "currency": record.currency,
        "description": record.description,
    }


def _key_info(info: "KeyInfo") -> "dict[str, Any]":
    return {
        "key": info.key,
        "status": info.status,
        "totalCost": _amount(info.total_cost),
        "assignedNodes": list(info.assigned_callers),
        "createdAt": _timestamp(info.created_at),
    }


def _success(message: "str") -> "dict[str, Any]":
    return {"success": True, "message": message}


class KeyManagerAPI:
    """
    KeyManagerAPI exposes the KeyManager operations with the request
    and response shapes the transport layer speaks: camelCase keys,
    unix-second timestamps and float amounts.

    The per-operation methods raise KeysmithError subclasses;
    dispatch() is the boundary that turns them into error payloads.
    """

    def __init__(self, manager: "KeyManager") -> "None":
        self._manager = manager
        self._handlers: "dict[str, Callable[..., Awaitable[Any]]]" = {
            "addKey": self.add_key,
            "removeKey": self.remove_key,
            "listKeys": self.list_keys,
            "getKeyStatus": self.get_key_status,
            "getTotalCosts": self.get_total_costs,
            "getKeyCosts": self.get_key_costs,
            "getAllCosts": self.get_all_costs,
            "getNodeHistory": self.get_node_history,
            "setAdminKey": self.set_admin_key,
            "checkAdminKey": self.check_admin_key,
            "refreshCosts": self.refresh_costs,
            "resetCosts": self.reset_costs,
            "listUpstreamKeys": self.list_upstream_keys,
            "createWorkspace": self.create_workspace,
            "requestApiKey": self.request_api_key,
        }

    @property
    def operations(self) -> "list[str]":
        return sorted(self._handlers)

    async def dispatch(
        self,
        operation: "str",
        payload: "dict[str, Any] | None" = None,
    ) -> "Any":
        """
        invokes an operation by name with a JSON-like payload.
        Failures come back as {"success": False, "error", "message"}.
        """
        handler = self._handlers.get(operation)
        if handler is None:
            return {
                "success": False,
                "error": "UnknownOperation",
                "message": f"unknown operation: {operation}",
            }

        kwargs = payload or {}
        try:
            inspect.signature(handler).bind(**kwargs)
        except TypeError as e:
            logger.info("operation_bad_request", operation=operation, error=str(e))
            return {"success": False, "error": "BadRequest", "message": str(e)}

        try:
            return await handler(**kwargs)
        except KeysmithError as e:
            logger.info("operation_failed", operation=operation, error=str(e))
            return {"success": False, "error": error_code(e), "message": str(e)}

    async def add_key(self, apiKey: "str") -> "dict[str, Any]":
        self._manager.add_key(apiKey)
        return _success("API key added successfully")

    async def remove_key(self, apiKey: "str") -> "dict[str, Any]":
        self._manager.remove_key(apiKey)
        return _success("API key removed successfully")

    async def list_keys(self) -> "list[dict[str, Any]]":
        return [_key_info(info) for info in self._manager.list_keys()]

    async def get_key_status(self, apiKey: "str") -> "dict[str, Any]":
        info = self._manager.key_status(apiKey)
        return {
            "status": info.status,
            "assignedNodes": list(info.assigned_callers),
            "totalCost": _amount(info.total_cost),
        }

    async def get_total_costs(
        self,
        startDate: "str | None" = None,
        endDate: "str | None" = None,
    ) -> "dict[str, Any]":
        totals = self._manager.total_costs(startDate, endDate)
        return {
            "totalCost": _amount(totals.total),
            "costByKey": [(key, _amount(amount)) for key, amount in totals.by_key],
            "currency": totals.currency,
        }

    async def get_key_costs(
        self,
        apiKey: "str",
        startDate: "str | None" = None,
        endDate: "str | None" = None,
    ) -> "dict[str, Any]":
        costs = self._manager.key_costs(apiKey, startDate, endDate)
        return {
            "apiKey": costs.api_key,
            "costs": [_cost(r) for r in costs.costs],
            "total": _amount(costs.total),
        }

    async def get_all_costs(self) -> "list[dict[str, Any]]":
        return [_cost(r) for r in self._manager.all_costs()]

    async def get_node_history(self) -> "list[dict[str, Any]]":
        return [
            {
                "nodeId": a.caller_id,
                "apiKey": a.credential,
                "issuedAt": _timestamp(a.issued_at),
            }
            for a in self._manager.node_history()
        ]

    async def set_admin_key(self, adminKey: "str") -> "dict[str, Any]":
        self._manager.set_admin_key(adminKey)
        return _success("Admin key set successfully")

    async def check_admin_key(self) -> "dict[str, Any]":
        has_admin_key, prefix = self._manager.check_admin_key()
        return {"hasAdminKey": has_admin_key, "keyPrefix": prefix}

    async def refresh_costs(self) -> "dict[str, Any]":
        result = await self._manager.refresh_costs()
        return {
            "success": result.refreshed,
            "message": result.message,
            "timestamp": _timestamp(result.timestamp),
        }

    async def reset_costs(self) -> "dict[str, Any]":
        await self._manager.reset_costs()
        return _success("Cost history reset")

    async def list_upstream_keys(
        self,
        workspaceId: "str | None" = None,
    ) -> "list[dict[str, Any]]":
        keys = await self._manager.list_upstream_keys(workspaceId)
        return [
            {
                "id": k.id,
                "name": k.name,
                "status": k.status,
                "createdAt": k.created_at,
                "workspaceId": k.workspace_id,
            }
            for k in keys
        ]

    async def create_workspace(self, name: "str") -> "dict[str, Any]":
        workspace = await self._manager.create_workspace(name)
        return {
            "id": workspace.id,
            "name": workspace.name,
            "createdAt": workspace.created_at,
            "archivedAt": workspace.archived_at,
        }

    async def request_api_key(self, callerId: "str") -> "str":
        return self._manager.request_api_key(callerId)
