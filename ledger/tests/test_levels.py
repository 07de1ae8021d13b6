import pytest

from ledger.config import EconomyConfig, LevelThreshold
from ledger.levels import LevelCalculator


class TestComputeLevel:
    """Tests for the level calculator."""

    def test_zero_is_first_level(self):
        info = LevelCalculator().compute(0)

        assert info.rank == 1
        assert info.name == "Novice"
        assert info.credits_to_next == 100
        assert info.progress_percentage == 0.0

    def test_negative_earnings_clamp_to_first_level(self):
        info = LevelCalculator().compute(-25)

        assert info.rank == 1
        assert info.progress_percentage == 0.0

    def test_progress_interpolates_between_thresholds(self):
        calc = LevelCalculator()

        assert calc.compute(50).progress_percentage == pytest.approx(50.0)
        assert calc.compute(110).rank == 2
        assert calc.compute(110).progress_percentage == pytest.approx(5.0)
        assert calc.compute(110).credits_to_next == 190

    def test_exact_threshold_reaches_level(self):
        info = LevelCalculator().compute(300)

        assert info.rank == 3
        assert info.name == "Scholar"
        assert info.credits_required == 300
        assert info.progress_percentage == 0.0

    def test_max_level(self):
        calc = LevelCalculator()

        for earned in (5000, 12345):
            info = calc.compute(earned)
            assert info.rank == 10
            assert info.name == "Transcendent"
            assert info.credits_to_next == 0
            assert info.progress_percentage == 100.0

    def test_rank_is_monotonic(self):
        calc = LevelCalculator()
        ranks = [calc.compute(earned).rank for earned in range(-50, 6000, 7)]

        assert ranks == sorted(ranks)

    def test_custom_table(self):
        calc = LevelCalculator([
            LevelThreshold(rank=1, name="Bronze", credits_required=0),
            LevelThreshold(rank=2, name="Silver", credits_required=10),
        ])

        assert calc.compute(9).name == "Bronze"
        assert calc.compute(10).name == "Silver"
        assert calc.compute(10).progress_percentage == 100.0


class TestLevelConfig:
    """Tests for level table validation."""

    def test_rejects_table_not_starting_at_zero(self):
        with pytest.raises(ValueError):
            EconomyConfig(levels=(LevelThreshold(rank=1, name="A", credits_required=5),))

    def test_rejects_descending_table(self):
        with pytest.raises(ValueError):
            EconomyConfig(levels=(
                LevelThreshold(rank=1, name="A", credits_required=0),
                LevelThreshold(rank=2, name="B", credits_required=300),
                LevelThreshold(rank=3, name="C", credits_required=200),
            ))

    def test_config_is_immutable(self):
        config = EconomyConfig()

        with pytest.raises(ValueError):
            config.allow_self_purchase = True
