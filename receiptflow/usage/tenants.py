"""Tenant directory and per-tenant quota.

The directory lives in a configuration spreadsheet with two tabs:

- users:  User ID | User Name | Tenant | Status | Registered | Last Active
- corps:  Tenant | Sheet ID | Sheet Name | Drive Folder ID | Quota Limit | Status | Current Usage

Per-tenant quota is a standing allotment administered by hand in the
directory: there is no automatic monthly rollover and reads are never
cached. Increments use the same unlocked read-then-write as the global
ledger and share its under-counting race.
"""

import logging

from pydantic import BaseModel

from receiptflow.sheets.client import SheetsApiError, SheetsClient
from receiptflow.shared.dates import Clock, format_date, make_clock
from receiptflow.usage.errors import LedgerUnavailable
from receiptflow.usage.ledger import QuotaStatus, UsageStats, quota_status

logger = logging.getLogger(__name__)

# 0-based columns of the tenants tab
TENANT_QUOTA_COLUMN = 4
TENANT_USAGE_COLUMN = 6
TENANT_USAGE_LETTER = "G"


class UserRecord(BaseModel):
    """Directory entry of a chat user."""

    row_number: int
    user_id: str
    user_name: str = ""
    tenant: str = ""
    status: str = "pending"
    registered: str = ""
    last_active: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == "active" and bool(self.tenant)


class TenantConfig(BaseModel):
    """Directory entry of a tenant: where its rows and documents go, and its quota."""

    row_number: int
    name: str
    sheet_id: str = ""
    sheet_name: str = "Sheet1"
    drive_folder_id: str = ""
    quota_limit: int
    status: str = "active"
    current_usage: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == "active"


def _cell(row: list[str], index: int, default: str = "") -> str:
    if index < len(row) and str(row[index]).strip():
        return str(row[index]).strip()
    return default


def _int_cell(row: list[str], index: int, default: int) -> int:
    try:
        return int(_cell(row, index, str(default)))
    except ValueError:
        return default


class TenantDirectory:
    """Users and tenants stored in the configuration spreadsheet."""

    def __init__(
        self,
        client: SheetsClient,
        spreadsheet_id: str,
        users_tab: str = "users",
        tenants_tab: str = "corps",
        default_quota: int = 500,
        clock: Clock | None = None,
    ) -> None:
        self.client = client
        self.spreadsheet_id = spreadsheet_id
        self.users_tab = users_tab
        self.tenants_tab = tenants_tab
        self.default_quota = default_quota
        self._clock = clock or make_clock()

    def get_user(self, user_id: str) -> UserRecord | None:
        """Look up a user by chat user id."""
        rows = self.client.get_values(self.spreadsheet_id, f"{self.users_tab}!A:F")
        # Row 1 is the header
        for row_number, row in enumerate(rows[1:], start=2):
            if _cell(row, 0) == user_id:
                return UserRecord(
                    row_number=row_number,
                    user_id=user_id,
                    user_name=_cell(row, 1),
                    tenant=_cell(row, 2),
                    status=_cell(row, 3, "pending"),
                    registered=_cell(row, 4),
                    last_active=_cell(row, 5),
                )
        return None

    def get_tenant(self, name: str) -> TenantConfig | None:
        """Look up a tenant by name."""
        rows = self.client.get_values(self.spreadsheet_id, f"{self.tenants_tab}!A:G")
        for row_number, row in enumerate(rows[1:], start=2):
            if _cell(row, 0) == name:
                return TenantConfig(
                    row_number=row_number,
                    name=name,
                    sheet_id=_cell(row, 1),
                    sheet_name=_cell(row, 2, "Sheet1"),
                    drive_folder_id=_cell(row, 3),
                    quota_limit=_int_cell(row, TENANT_QUOTA_COLUMN, self.default_quota),
                    status=_cell(row, 5, "active"),
                    current_usage=_int_cell(row, TENANT_USAGE_COLUMN, 0),
                )
        return None

    def list_active_tenants(self) -> list[str]:
        """Names of all active tenants, in directory order."""
        rows = self.client.get_values(self.spreadsheet_id, f"{self.tenants_tab}!A:F")
        return [
            _cell(row, 0)
            for row in rows[1:]
            if _cell(row, 0) and _cell(row, 5, "active") == "active"
        ]

    def set_tenant_usage(self, tenant: TenantConfig, count: int) -> None:
        """Overwrite the usage cell of a tenant row."""
        self.client.update_values(
            self.spreadsheet_id,
            f"{self.tenants_tab}!{TENANT_USAGE_LETTER}{tenant.row_number}",
            [[count]],
            value_input_option="USER_ENTERED",
        )

    def add_user(self, user_id: str, user_name: str = "") -> None:
        """Register a user as pending, without a tenant."""
        today = format_date(self._clock())
        self.client.append_values(
            self.spreadsheet_id,
            f"{self.users_tab}!A:F",
            [[user_id, user_name, "", "pending", today, ""]],
        )
        logger.info(f"New user added: {user_id} ({user_name})")

    def assign_tenant(self, user: UserRecord, tenant: TenantConfig) -> UserRecord:
        """Attach a user to a tenant and activate them.

        Also used to move an active user to another tenant.
        """
        updated = user.model_copy(
            update={
                "tenant": tenant.name,
                "status": "active",
                "last_active": format_date(self._clock()),
            }
        )
        self.client.update_values(
            self.spreadsheet_id,
            f"{self.users_tab}!A{user.row_number}:F{user.row_number}",
            [
                [
                    updated.user_id,
                    updated.user_name,
                    updated.tenant,
                    updated.status,
                    updated.registered,
                    updated.last_active,
                ]
            ],
            value_input_option="USER_ENTERED",
        )
        logger.info(f"User {user.user_id} assigned to tenant {tenant.name}")
        return updated

    def enroll_user(self, user_id: str, tenant: TenantConfig, user_name: str = "") -> UserRecord:
        """Register the user if needed, then assign them to the tenant.

        Raises:
            SheetsApiError: If the directory cannot be read or written
            LookupError: If the user row cannot be found after registering
        """
        user = self.get_user(user_id)
        if user is None:
            self.add_user(user_id, user_name)
            user = self.get_user(user_id)
            if user is None:
                raise LookupError(f"User {user_id} missing from directory after registration")
        if user_name and not user.user_name:
            user = user.model_copy(update={"user_name": user_name})
        return self.assign_tenant(user, tenant)


class TenantUsageLedger:
    """Per-tenant quota with the same fail-open contract as UsageLedger."""

    def __init__(self, directory: TenantDirectory, quota_message: str | None = None) -> None:
        self.directory = directory
        self.quota_message = quota_message

    def _load(self, tenant: str) -> TenantConfig | None:
        try:
            return self.directory.get_tenant(tenant)
        except SheetsApiError as e:
            raise LedgerUnavailable(f"Failed to read tenant {tenant}: {e}") from e

    def usage(self, tenant: str) -> tuple[int, int]:
        """(used, limit) of a tenant; fails open to (0, default quota)."""
        try:
            config = self._load(tenant)
        except LedgerUnavailable as e:
            logger.error(f"Error getting tenant usage, failing open: {e}")
            return 0, self.directory.default_quota
        if config is None:
            return 0, self.directory.default_quota
        return config.current_usage, config.quota_limit

    def check_availability(self, tenant: str) -> QuotaStatus:
        used, limit = self.usage(tenant)
        message = self.quota_message or (
            f"Corp {tenant} has reached its monthly quota ({used}/{limit})"
        )
        return quota_status(used, limit, message)

    def increment(self, tenant: str) -> int:
        """Count one successful extraction for a tenant.

        Returns:
            New usage count, or 0 when the tenant is unknown
        """
        try:
            config = self._load(tenant)
        except LedgerUnavailable as e:
            logger.error(f"Error incrementing tenant usage: {e}")
            return 0
        if config is None:
            logger.warning(f"Tenant not found for usage increment: {tenant}")
            return 0

        new_usage = config.current_usage + 1
        try:
            self.directory.set_tenant_usage(config, new_usage)
        except SheetsApiError as e:
            logger.error(
                f"Failed to persist usage increment for tenant {tenant}; "
                f"stored count is now behind {new_usage}: {e}"
            )
            return new_usage
        logger.info(f"Tenant usage incremented: {tenant} {new_usage}/{config.quota_limit}")
        return new_usage

    def usage_stats(self, tenant: str) -> UsageStats:
        used, limit = self.usage(tenant)
        return UsageStats(
            period="standing",
            period_display="standing allotment",
            used=used,
            limit=limit,
            remaining=max(0, limit - used),
            percent_used=round(used / limit * 100) if limit > 0 else 100,
            quota_exceeded=used >= limit,
        )
