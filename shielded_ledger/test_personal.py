from unittest import TestCase

from hypothesis import given, settings, strategies as st

from shielded_ledger.crypto import Field, pedersen_non_hiding
from shielded_ledger.errors import StateError
from shielded_ledger.personal import BalanceEntry, PersonalStateManager, reconstruct

UKH = Field(0xABCDEF)
TOKEN = 0x1111111111111111111111111111111111111111
OTHER = 0x2222222222222222222222222222222222222222


class TestReconstruct(TestCase):
    @given(
        amount=st.integers(min_value=0, max_value=2**128),
        first_use=st.booleans(),
    )
    @settings(max_examples=3, deadline=None)
    def test_tot_is_sum_of_parts(self, amount, first_use):
        state = reconstruct(amount, TOKEN, UKH, first_use)
        assert state.verify(UKH)
        extra = pedersen_non_hiding(TOKEN, UKH) if first_use else None
        expected = state.inner + state.outer
        if extra is not None:
            expected = expected + extra
        assert state.tot == expected

    def test_openings(self):
        state = reconstruct(150, TOKEN, UKH)
        assert state.inner_m == 150
        assert state.outer_m == 0
        assert state.outer_r == TOKEN
        assert state.outer == pedersen_non_hiding(0, TOKEN)

    def test_verify_detects_tampering(self):
        state = reconstruct(150, TOKEN, UKH)
        assert not state.verify(Field(1))
        assert reconstruct(150, TOKEN, UKH, first_use=True).tot != state.tot


class TestPersonalStateManager(TestCase):
    def setUp(self):
        self.manager = PersonalStateManager(
            UKH,
            [
                BalanceEntry(TOKEN, 100, 0),
                BalanceEntry(TOKEN, 150, 1),
                BalanceEntry(OTHER, 7, 2),
            ],
        )

    def test_latest_entry_at_or_below_nonce(self):
        assert self.manager.get(1, TOKEN) == reconstruct(150, TOKEN, UKH)
        assert self.manager.get(0, TOKEN) == reconstruct(100, TOKEN, UKH)
        # nonce 2 was spent on another token
        assert self.manager.get(2, TOKEN) == reconstruct(150, TOKEN, UKH)
        assert self.manager.balance(TOKEN, 2) == 150

    def test_new_token_path(self):
        state = self.manager.get(1, OTHER)
        assert state.first_use
        assert state.inner_m == 0
        assert state == reconstruct(0, OTHER, UKH, first_use=True)

    def test_put_overrides_cache(self):
        state = reconstruct(1, TOKEN, UKH)
        self.manager.put(5, TOKEN, state)
        assert self.manager.get(5, TOKEN) is state

    def test_new_entry_invalidates_later_cache(self):
        assert self.manager.get(3, TOKEN).inner_m == 150
        self.manager.add_entries([BalanceEntry(TOKEN, 0, 3)])
        assert self.manager.get(3, TOKEN).inner_m == 0
        assert self.manager.get(1, TOKEN).inner_m == 150

    def test_negative_nonce(self):
        with self.assertRaises(StateError):
            self.manager.get(-1, TOKEN)
