"""
Request-scoped account context.

The caller identifies itself with the X-Account-Id header (issued by the
external identity provider). Handlers receive an AccountContext through
FastAPI dependencies instead of reading a process-wide "current account".
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

import database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountContext:
    id: str
    role: str
    email: str
    name: str
    household_number: Optional[str] = None
    barangay: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def display_name(account: dict) -> str:
    return account.get("name") or " ".join(
        p for p in (account.get("first_name"), account.get("last_name")) if p
    ) or account.get("email") or "Unknown"


def get_current_account(x_account_id: Optional[str] = Header(None)) -> AccountContext:
    if not x_account_id:
        raise HTTPException(status_code=401, detail="Missing X-Account-Id header")
    try:
        account = database.get_document("accounts", x_account_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Unknown account")
    if not account:
        raise HTTPException(status_code=401, detail="Unknown account")
    return AccountContext(
        id=str(account["_id"]),
        role=account.get("role", "household"),
        email=account.get("email", ""),
        name=display_name(account),
        household_number=account.get("household_number"),
        barangay=account.get("barangay"),
    )


def require_roles(*roles: str):
    def checker(account: AccountContext = Depends(get_current_account)) -> AccountContext:
        if account.role not in roles:
            logger.info("Account %s (%s) denied; needs one of %s", account.id, account.role, roles)
            raise HTTPException(status_code=403, detail="Not allowed for this account")
        return account
    return checker


staff_only = require_roles("admin", "bhw")
admin_only = require_roles("admin")
