"""
Unit tests for the owner/platform split.
"""
import pytest

from mobipay.errors import InvalidChargeError, InvalidPercentageError, ValidationError
from mobipay.services.split import compute_split


class TestComputeSplit:
    def test_default_ten_percent(self):
        result = compute_split(24, 10)
        # platform = round(2.4) = 2
        assert result.platform_share == 2
        assert result.owner_share == 22
        assert result.split_ratio == "22:2"

    def test_half_up_rounding_of_platform_share(self):
        # 15 * 10% = 1.5 -> 2
        result = compute_split(15, 10)
        assert result.platform_share == 2
        assert result.owner_share == 13

    def test_single_shilling_goes_to_owner(self):
        result = compute_split(1, 10)
        assert result.owner_share == 1
        assert result.platform_share == 0

    def test_owner_correction_when_platform_takes_everything(self):
        result = compute_split(5, 100)
        assert result.platform_share == 4
        assert result.owner_share == 1

    def test_correction_is_narrow(self):
        # 90% of 2 = 1.8 -> 2, owner would get 0 -> corrected to 1:1
        assert compute_split(2, 90).split_ratio == "1:1"
        # 60% of 2 = 1.2 -> 1, owner already has 1, nothing moves
        assert compute_split(2, 60).split_ratio == "1:1"
        # 100% of a single shilling is not corrected
        result = compute_split(1, 100)
        assert (result.owner_share, result.platform_share) == (0, 1)

    def test_zero_percent(self):
        result = compute_split(8, 0)
        assert (result.owner_share, result.platform_share) == (8, 0)

    def test_fractional_percentage(self):
        # 12.5% of 8 = 1.0
        assert compute_split(8, 12.5).platform_share == 1

    @pytest.mark.parametrize("charge", [1, 2, 3, 7, 8, 13, 24, 99, 800])
    @pytest.mark.parametrize("percent", [0, 0.5, 10, 33.3, 50, 75, 99.9, 100])
    def test_shares_always_sum_to_charge(self, charge, percent):
        result = compute_split(charge, percent)
        assert result.owner_share + result.platform_share == charge
        assert result.owner_share >= 0
        assert result.platform_share >= 0

    def test_percentages_reported(self):
        result = compute_split(8, 12.5)
        assert result.owner_percentage == 87.5
        assert result.platform_percentage == 12.5

    def test_zero_charge_rejected(self):
        with pytest.raises(InvalidChargeError):
            compute_split(0, 10)

    def test_negative_charge_rejected(self):
        with pytest.raises(InvalidChargeError):
            compute_split(-3, 10)

    @pytest.mark.parametrize("percent", [-0.1, 100.01, 250, float("nan"), float("inf")])
    def test_percentage_out_of_range(self, percent):
        with pytest.raises(InvalidPercentageError):
            compute_split(10, percent)

    def test_split_errors_are_validation_errors(self):
        with pytest.raises(ValidationError):
            compute_split(0, 10)
