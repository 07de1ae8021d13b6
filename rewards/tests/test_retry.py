from ledger.errors import StorageUnavailableError
from ledger.service import LedgerService
from ledger.storage import InMemoryStorage
from rewards.policies import RewardPolicies
from rewards.retry import RewardRetryQueue


ACCOUNT_ID = "550e8400-e29b-41d4-a716-446655440000"


class FlakyStorage(InMemoryStorage):
    """Fails the first `failures` appends the way a locked database would."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    def append(self, requests, levels):
        if self.failures > 0:
            self.failures -= 1
            raise StorageUnavailableError("database is locked")
        return super().append(requests, levels)


def make_policies(failures):
    service = LedgerService(storage=FlakyStorage(failures))
    service.create_account(ACCOUNT_ID)
    return RewardPolicies(service)


class TestRewardRetryQueue:
    def test_successful_reward_is_not_queued(self):
        policies = make_policies(failures=0)
        queue = RewardRetryQueue(sleep=lambda _: None)

        result = queue.submit("upload", policies.award_resource_upload, ACCOUNT_ID, "r1")

        assert result.transaction.amount == 20
        assert len(queue) == 0

    def test_transient_failure_is_retried_by_drain(self):
        policies = make_policies(failures=2)
        delays = []
        queue = RewardRetryQueue(max_attempts=3, base_delay=0.1, sleep=delays.append)

        assert queue.submit("welcome", policies.award_welcome_bonus, ACCOUNT_ID) is None
        assert len(queue) == 1

        results = queue.drain()

        assert [r["success"] for r in results] == [True]
        assert delays == [0.1, 0.2]
        assert policies.service.get_balance(ACCOUNT_ID) == 120
        assert queue.dead_letters == []

    def test_exhausted_reward_moves_to_dead_letters(self):
        policies = make_policies(failures=10)
        delays = []
        queue = RewardRetryQueue(max_attempts=3, base_delay=0.1, sleep=delays.append)

        queue.submit("welcome", policies.award_welcome_bonus, ACCOUNT_ID)
        results = queue.drain()

        assert results == [{"name": "welcome", "success": False, "error": "database is locked"}]
        assert [item.name for item in queue.dead_letters] == ["welcome"]
        assert queue.dead_letters[0].attempts == 3
        assert len(delays) == 2
        assert policies.service.get_balance(ACCOUNT_ID) == 0

    def test_business_rejection_is_dropped(self):
        policies = make_policies(failures=0)
        queue = RewardRetryQueue(sleep=lambda _: None)

        result = queue.submit("upload", policies.award_resource_upload, "missing-account", "r1")

        assert result is None
        assert len(queue) == 0
        assert queue.dead_letters == []
