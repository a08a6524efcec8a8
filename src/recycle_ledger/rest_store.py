"""Read-only PostgREST record store for deployments backed by the hosted database."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from . import data_manager, log
from .core_logic import FetchFailure


@dataclass(frozen=True)
class PostgrestSettings:
    url: str
    api_key: str
    timeout: float = 30.0


class PostgrestRecordStore:
    """Fetch ledger entries and bank accounts over the PostgREST HTTP API.

    The server applies the ordering: transactions newest first with the bank
    account name embedded, accounts alphabetically.
    """

    def __init__(self, settings: PostgrestSettings, *, opener: Callable[..., Any] = urlopen):
        self.settings = settings
        self._opener = opener

    @classmethod
    def from_config(cls, config: data_manager.ConfigSettings) -> "PostgrestRecordStore":
        """Build a store from ``[Store]`` settings, reading the key from the environment.

        Raises:
            KeyError: If the URL or the API key variable is not configured.
        """
        if not config.store_url:
            raise KeyError("Missing required configuration entry: [Store] Url")
        if not config.api_key_variable:
            raise KeyError("Missing required configuration entry: [Store] ApiKeyVariable")
        api_key = os.environ.get(config.api_key_variable)
        if not api_key:
            raise KeyError(f"Environment variable '{config.api_key_variable}' is not set")
        return cls(PostgrestSettings(url=config.store_url, api_key=api_key))

    def fetch_transactions(self) -> List[data_manager.TransactionRow]:
        rows = self._get_rows(
            "transactions",
            {"select": "*,bank_accounts(name)", "order": "transaction_date.desc"},
        )
        records = [deserialize_transaction_json(row) for row in rows]
        log.info("Fetched %d transactions from %s", len(records), self.settings.url)
        return records

    def fetch_bank_accounts(self) -> List[data_manager.BankAccountRow]:
        rows = self._get_rows("bank_accounts", {"select": "id,name", "order": "name.asc"})
        return [
            data_manager.BankAccountRow(bank_account_id=str(row["id"]), name=str(row.get("name") or ""))
            for row in rows
        ]

    def _get_rows(self, table: str, query: Mapping[str, str]) -> list[dict[str, Any]]:
        request = Request(
            url=f"{self.settings.url}/rest/v1/{table}?{urlencode(query)}",
            headers={
                "apikey": self.settings.api_key,
                "Authorization": f"Bearer {self.settings.api_key}",
                "Accept": "application/json",
            },
            method="GET",
        )
        try:
            with self._opener(request, timeout=self.settings.timeout) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")[:500]
            log.error("PostgREST request for %s failed with status %s", table, exc.code)
            raise FetchFailure(f"Failed to load {table}: status {exc.code}: {body}") from exc
        except (URLError, TimeoutError) as exc:
            log.error("PostgREST request for %s failed: %s", table, exc)
            raise FetchFailure(f"Failed to load {table}: {exc}") from exc
        except ValueError as exc:
            log.error("PostgREST returned malformed JSON for %s", table)
            raise FetchFailure(f"Failed to load {table}: invalid JSON response") from exc

        if not isinstance(payload, list):
            raise FetchFailure(f"Failed to load {table}: expected a JSON array")
        return payload


def deserialize_transaction_json(row: Mapping[str, Any]) -> data_manager.TransactionRow:
    """Map one PostgREST transaction object onto :class:`TransactionRow`."""
    account = row.get("bank_accounts") or {}
    bank_account_id = row.get("bank_account_id")
    return data_manager.TransactionRow(
        transaction_id=str(row.get("id", "")),
        transaction_date=data_manager.parse_transaction_date(row.get("transaction_date")),
        transaction_type=str(row.get("transaction_type") or ""),
        reference_type=row.get("reference_type"),
        description=row.get("description"),
        amount=data_manager.parse_amount(row.get("amount")),
        is_credit=data_manager.parse_flag(row.get("is_credit")),
        bank_account_id=str(bank_account_id) if bank_account_id is not None else None,
        location_id=_optional_id(row.get("location_id")),
        material_id=_optional_id(row.get("material_id")),
        bank_account_name=account.get("name") if isinstance(account, Mapping) else None,
    )


def _optional_id(value: Any) -> str | None:
    return str(value) if value is not None else None
