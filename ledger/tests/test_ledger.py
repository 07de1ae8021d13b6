"""
Unit Tests for the Ledger Service

Tests cover:
1. Applying earn, spend, bonus and penalty transactions
2. Idempotency (duplicate prevention)
3. Balance calculation from ledger entries
4. Level fields kept in step with cumulative earnings
5. Per-account locks in the in-memory store
6. The end-to-end credit scenario
"""

import pytest

from ledger.levels import LevelCalculator
from ledger.models import TransactionCategory, TransactionKind, TransactionRequest
from ledger.service import AccountNotFoundError, InsufficientCreditsError
from ledger.storage import InMemoryStorage


ACCOUNT_ID = "550e8400-e29b-41d4-a716-446655440000"
BUYER_ID = "660e8400-e29b-41d4-a716-446655440001"


def earn(amount, key, category=TransactionCategory.RESOURCE_UPLOAD, account_id=ACCOUNT_ID):
    return TransactionRequest(
        account_id=account_id, amount=amount, kind=TransactionKind.EARN,
        category=category, description="test earn", reference_key=key,
    )


def spend(amount, key, category=TransactionCategory.FILE_DOWNLOAD, account_id=ACCOUNT_ID):
    return TransactionRequest(
        account_id=account_id, amount=amount, kind=TransactionKind.SPEND,
        category=category, description="test spend", reference_key=key,
    )


class TestAccounts:
    """Tests for account creation and lookup."""

    def test_new_account_starts_at_zero_and_level_one(self, service):
        account = service.create_account(ACCOUNT_ID)

        assert account.balance == 0
        assert account.level_rank == 1
        assert account.level_name == "Novice"

    def test_create_account_is_idempotent(self, service):
        service.create_account(ACCOUNT_ID)
        service.process_transaction(earn(20, "upload:1"))

        account = service.create_account(ACCOUNT_ID)

        assert account.balance == 20

    def test_unknown_account_raises(self, service):
        with pytest.raises(AccountNotFoundError):
            service.get_balance(ACCOUNT_ID)

        with pytest.raises(AccountNotFoundError):
            service.process_transaction(earn(20, "upload:1"))


class TestProcessTransaction:
    """Tests for applying single transactions."""

    def test_earn_increases_balance(self, service):
        service.create_account(ACCOUNT_ID)

        result = service.process_transaction(earn(20, "upload:1"))

        assert result.success is True
        assert result.already_applied is False
        assert result.transaction.amount == 20
        assert result.transaction.balance_after == 20
        assert result.account.balance == 20

    def test_spend_decreases_balance(self, service):
        service.create_account(ACCOUNT_ID)
        service.process_transaction(earn(100, "upload:1"))

        result = service.process_transaction(spend(60, "download:1"))

        assert result.transaction.kind == TransactionKind.SPEND
        assert result.transaction.balance_after == 40
        assert service.get_balance(ACCOUNT_ID) == 40

    def test_spend_exceeding_balance_is_rejected_without_writing(self, service):
        service.create_account(ACCOUNT_ID)
        service.process_transaction(earn(50, "upload:1"))

        with pytest.raises(InsufficientCreditsError) as excinfo:
            service.process_transaction(spend(51, "download:1"))

        assert excinfo.value.balance == 50
        assert excinfo.value.required == 51
        assert service.get_balance(ACCOUNT_ID) == 50
        assert service.get_ledger_history(ACCOUNT_ID).total_count == 1

    def test_spend_of_entire_balance_is_allowed(self, service):
        service.create_account(ACCOUNT_ID)
        service.process_transaction(earn(50, "upload:1"))

        service.process_transaction(spend(50, "download:1"))

        assert service.get_balance(ACCOUNT_ID) == 0

    def test_penalty_is_checked_like_a_spend(self, service):
        service.create_account(ACCOUNT_ID)
        penalty = TransactionRequest(
            account_id=ACCOUNT_ID, amount=5, kind=TransactionKind.PENALTY,
            category=TransactionCategory.ADMIN_ADJUSTMENT, reference_key="admin:penalty-1",
        )

        with pytest.raises(InsufficientCreditsError):
            service.process_transaction(penalty)

    def test_amount_must_be_positive(self):
        with pytest.raises(ValueError):
            earn(0, "upload:1")


class TestIdempotency:
    """Tests for duplicate reference keys."""

    def test_same_reference_applies_once(self, service):
        service.create_account(ACCOUNT_ID)

        first = service.process_transaction(earn(20, "upload:42"))
        second = service.process_transaction(earn(20, "upload:42"))

        assert second.already_applied is True
        assert second.transaction.id == first.transaction.id
        assert "already applied" in second.message.lower()
        assert service.get_balance(ACCOUNT_ID) == 20
        assert service.get_ledger_history(ACCOUNT_ID).total_count == 1

    def test_retried_spend_returns_cached_result(self, service):
        service.create_account(ACCOUNT_ID)
        service.process_transaction(earn(60, "upload:1"))
        service.process_transaction(spend(50, "download:7"))

        # Balance is now below the cost, but the retry must not fail.
        retry = service.process_transaction(spend(50, "download:7"))

        assert retry.already_applied is True
        assert service.get_balance(ACCOUNT_ID) == 10

    def test_same_reference_on_different_accounts_is_independent(self, service):
        service.create_account(ACCOUNT_ID)
        service.create_account(BUYER_ID)

        service.process_transaction(earn(20, "upload:42"))
        service.process_transaction(earn(20, "upload:42", account_id=BUYER_ID))

        assert service.get_balance(ACCOUNT_ID) == 20
        assert service.get_balance(BUYER_ID) == 20


class TestBalanceCalculation:
    """Tests for balance calculation."""

    def test_balance_matches_signed_sum_after_every_operation(self, service):
        service.create_account(ACCOUNT_ID)
        steps = [
            earn(100, "upload:1"),
            spend(30, "download:1"),
            earn(45, "upvotes:9", TransactionCategory.UPVOTE_RECEIVED),
            spend(15, "chatmessage:1", TransactionCategory.CHAT_MESSAGE),
            earn(100, "upload:1"),
        ]

        for step in steps:
            service.process_transaction(step)
            assert service.verify_ledger(ACCOUNT_ID)

        assert service.get_balance(ACCOUNT_ID) == 100
        assert service.storage.ledger_balance(ACCOUNT_ID) == 100

    def test_cumulative_earned_excludes_spends_and_bonuses(self, service):
        service.create_account(ACCOUNT_ID)
        service.process_transaction(earn(100, "upload:1"))
        service.process_transaction(spend(40, "download:1"))
        service.process_transaction(TransactionRequest(
            account_id=ACCOUNT_ID, amount=20, kind=TransactionKind.BONUS,
            category=TransactionCategory.CHAT_BONUS, reference_key="chatbonus:s1",
        ))

        assert service.get_cumulative_earned(ACCOUNT_ID) == 100
        assert service.get_balance(ACCOUNT_ID) == 80

    def test_ledger_history(self, service):
        service.create_account(ACCOUNT_ID)
        service.process_transaction(earn(100, "upload:1"))
        service.process_transaction(spend(30, "download:1"))

        history = service.get_ledger_history(ACCOUNT_ID)

        assert history.account_id == ACCOUNT_ID
        assert history.total_count == 2
        assert history.current_balance == 70
        assert history.entries[0].reference_key == "download:1"

        downloads = service.get_ledger_history(ACCOUNT_ID, category=TransactionCategory.FILE_DOWNLOAD)
        assert downloads.total_count == 1

    def test_credit_summary(self, service):
        service.create_account(ACCOUNT_ID)
        service.process_transaction(earn(150, "upload:1"))
        service.process_transaction(spend(50, "download:1"))

        summary = service.get_credit_summary(ACCOUNT_ID)

        assert summary.current_balance == 100
        assert summary.total_earned == 150
        assert summary.level.rank == 2
        assert summary.level.progress_percentage == pytest.approx(25.0)
        assert len(summary.recent_transactions) == 2


class TestLevelTracking:
    """Tests for level fields persisted with every append."""

    def test_level_follows_cumulative_earned_not_balance(self, service):
        service.create_account(ACCOUNT_ID)
        service.process_transaction(earn(320, "upload:1"))
        service.process_transaction(spend(300, "download:1"))

        account = service.get_account(ACCOUNT_ID)

        assert account.balance == 20
        assert account.level_rank == 3
        assert account.level_name == "Scholar"

    def test_bonus_does_not_raise_level(self, service):
        service.create_account(ACCOUNT_ID)
        service.process_transaction(TransactionRequest(
            account_id=ACCOUNT_ID, amount=500, kind=TransactionKind.BONUS,
            category=TransactionCategory.REFERRAL_BONUS, reference_key="referral:x",
        ))

        assert service.get_account(ACCOUNT_ID).level_rank == 1

    def test_append_reports_rank_before_the_write(self, service):
        service.create_account(ACCOUNT_ID)

        (outcome,) = service.storage.append([earn(120, "upload:1")], service.levels)
        (repeat,) = service.storage.append([earn(120, "upload:1")], service.levels)

        assert outcome.previous_level_rank == 1
        assert outcome.account.level_rank == 2
        assert repeat.created is False
        assert repeat.previous_level_rank is None

    def test_level_up_is_logged(self, service, caplog):
        service.create_account(ACCOUNT_ID)

        with caplog.at_level("INFO", logger="ledger.service"):
            service.process_transaction(earn(50, "upload:1"))
            service.process_transaction(earn(70, "upload:2"))

        reached = [r.getMessage() for r in caplog.records if "reached level" in r.getMessage()]
        assert reached == [f"Account {ACCOUNT_ID} reached level Apprentice"]


class TestInMemoryLocks:
    """Per-account locks are only created for accounts that exist."""

    def test_reads_of_unknown_accounts_add_no_lock(self):
        storage = InMemoryStorage()

        assert storage.get_transaction(BUYER_ID, "purchase:1") is None
        assert storage.list_transactions(BUYER_ID) == ([], 0)
        with pytest.raises(AccountNotFoundError):
            storage.get_account(BUYER_ID)
        with pytest.raises(AccountNotFoundError):
            storage.append([earn(10, "upload:1", account_id=BUYER_ID)], LevelCalculator())

        assert storage._locks == {}

    def test_created_account_gets_a_lock(self):
        storage = InMemoryStorage()
        storage.create_account(ACCOUNT_ID, LevelCalculator())

        assert list(storage._locks) == [ACCOUNT_ID]


class TestCreditScenario:
    """The documented end-to-end flow."""

    def test_full_scenario(self, service, notifier):
        seller = ACCOUNT_ID
        service.create_account(seller)
        service.create_account(BUYER_ID)

        service.process_transaction(earn(20, "upload:r1"))
        account = service.get_account(seller)
        assert (account.balance, account.level_rank) == (20, 1)

        service.process_transaction(earn(90, "followers:100", TransactionCategory.FOLLOWER_MILESTONE))
        account = service.get_account(seller)
        assert service.get_cumulative_earned(seller) == 110
        assert account.level_rank == 2

        with pytest.raises(InsufficientCreditsError):
            service.process_transaction(spend(200, "download:big"))
        assert service.get_balance(seller) == 110

        service.process_transaction(TransactionRequest(
            account_id=BUYER_ID, amount=200, kind=TransactionKind.BONUS,
            category=TransactionCategory.ADMIN_ADJUSTMENT, reference_key="admin:fund",
        ))
        receipt = service.settle_purchase(BUYER_ID, "7", seller, cost=150, commission_rate=0.20)

        assert (receipt.cost, receipt.commission) == (150, 30)
        assert service.get_balance(BUYER_ID) == 50
        assert service.get_balance(seller) == 140

        again = service.process_transaction(earn(20, "upload:r1"))
        assert again.already_applied is True
        assert service.get_balance(seller) == 140
        assert service.verify_ledger(seller)
        assert service.verify_ledger(BUYER_ID)
