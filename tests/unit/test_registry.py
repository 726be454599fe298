"""
Unit tests for payee account registration.
"""
import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from mobipay.errors import BusinessRuleError
from mobipay.models import Account
from mobipay.services import registry


@pytest.mark.asyncio
class TestPlatformAccount:
    async def test_store_rejects_second_active_platform(self, db, seeded):
        db.add(Account(account_number="254700000009", account_type="PLATFORM", account_name="Second"))
        with pytest.raises(IntegrityError):
            await db.commit()
        await db.rollback()

    async def test_registration_that_passed_the_check_still_loses(self, db, seeded, monkeypatch):
        # Both registrations saw no active platform account
        async def nothing_active(_db):
            return False

        monkeypatch.setattr(registry, "_active_platform_exists", nothing_active)
        with pytest.raises(BusinessRuleError) as exc:
            await registry.create_account(db, "254700000009", "PLATFORM", "Second")
        assert exc.value.message == "An active platform account already exists"

    async def test_replacing_a_deactivated_platform(self, db, seeded):
        await db.execute(
            update(Account).where(Account.account_type == "PLATFORM").values(is_active=False)
        )
        await db.commit()

        account = await registry.create_account(db, "254700000009", "PLATFORM", "New Developer Account")
        assert account.is_active

        payees = await registry.resolve_payees(db, "3025")
        assert payees.platform.account_number == "254700000009"

    async def test_owner_accounts_are_not_limited(self, db, seeded):
        await registry.create_account(db, "254700000001", "OWNER", "Owner One")
        await registry.create_account(db, "254700000002", "OWNER", "Owner Two")

    async def test_duplicate_number_reported_as_duplicate(self, db, seeded):
        with pytest.raises(BusinessRuleError) as exc:
            await registry.create_account(db, "254112331196", "OWNER", "Reuse")
        assert exc.value.message == "Account 254112331196 already exists"
