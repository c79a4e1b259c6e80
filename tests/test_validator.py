"""
tests/test_validator.py

Voucher validation suite.

Each test pins one accept/reject rule of VoucherValidator.

  PARSING
    VAL-01  Well-formed header parses; channel id lower-cased
    VAL-02  Extra / missing fields rejected
    VAL-03  Non-decimal amount or nonce rejected
    VAL-04  Amounts beyond 2**256 survive parsing exactly

  DECISIONS
    VAL-05  Fresh channel, covering voucher → accepted, new_total = amount
    VAL-06  Repeated nonce → invalid_nonce
    VAL-07  Amount above deposit → exceeds_deposit
    VAL-08  Amount below charged + required → insufficient_funds (channel returned)
    VAL-09  Unknown channel → channel_not_found
    VAL-10  Channel of another provider → wrong_provider
    VAL-11  Signature for another channel id → invalid_signature
    VAL-12  Signature under another chain id → invalid_signature
    VAL-13  Signature by someone other than the consumer → invalid_signature
    VAL-14  Chain read failure → validation_error, no exception

  COMMIT
    VAL-15  store_voucher persists voucher + channel together
    VAL-16  Validate does not persist anything
    VAL-17  Legacy channel without expiry is backfilled
    VAL-18  commit() rejects post-call shortfall as insufficient_funds_post
    VAL-19  total_charged never exceeds deposit across a voucher sequence
    VAL-20  Error headers report required / provided
    VAL-21  A second store from the same pre-store snapshot is refused
    VAL-22  store_voucher refuses a nonce that is not above the last one
    VAL-23  Upper-case channel id is stored lower-case and can be claimed
"""

import json
import time

import pytest
from eth_account import Account

from drainpay.chain.typed_data import VoucherDomain
from drainpay.core.exceptions import LedgerError, VoucherFormatError
from drainpay.core.models import (
    Channel,
    RejectReason,
    VoucherHeader,
    payment_error_headers,
)
from drainpay.ledger.ledger import ChannelLedger
from drainpay.validation.validator import (
    VoucherValidator,
    parse_voucher_header,
    parse_voucher_or_raise,
)
from tests.helpers.fake_chain import FakeChainGateway


DEPOSIT = 1_000_000


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────

@pytest.fixture
def chain():
    return FakeChainGateway()


@pytest.fixture
def consumer():
    return Account.create()


@pytest.fixture
def ledger(tmp_path):
    return ChannelLedger(tmp_path / "vouchers.json")


@pytest.fixture
def validator(chain, ledger):
    return VoucherValidator(chain, ledger)


@pytest.fixture
def channel_id(chain, consumer):
    return chain.open_channel(
        consumer.address, deposit=DEPOSIT, expiry=int(time.time()) + 86400,
    )


def header(channel_id, amount="100000", nonce="1", signature="0x" + "ab" * 65, **extra):
    data = {
        "channelId": channel_id,
        "amount":    amount,
        "nonce":     nonce,
        "signature": signature,
    }
    data.update(extra)
    return json.dumps(data)


# ─────────────────────────────────────────────────────────────
# PARSING
# ─────────────────────────────────────────────────────────────

class TestParsing:

    def test_VAL01_well_formed_header_parses(self):
        cid = "0x" + "AB" * 32
        voucher = parse_voucher_header(header(cid))
        assert voucher is not None
        assert voucher.channel_id == cid.lower()
        assert voucher.amount == 100_000
        assert voucher.nonce == 1

    @pytest.mark.parametrize("raw", [
        None,
        "",
        "not json",
        "[]",
        json.dumps({"channelId": "0x" + "00" * 32, "amount": "1", "nonce": "1"}),
        header("0x" + "00" * 32, memo="hi"),
    ])
    def test_VAL02_wrong_field_set_rejected(self, raw):
        assert parse_voucher_header(raw) is None

    @pytest.mark.parametrize("amount,nonce", [
        ("-1", "1"),
        ("1.5", "1"),
        ("1e6", "1"),
        ("100", " 1"),
        ("100", ""),
    ])
    def test_VAL03_non_decimal_numbers_rejected(self, amount, nonce):
        assert parse_voucher_header(header("0x" + "00" * 32, amount, nonce)) is None

    def test_VAL03_numbers_must_be_strings(self):
        raw = json.dumps({
            "channelId": "0x" + "00" * 32,
            "amount":    100,
            "nonce":     "1",
            "signature": "0xabcd",
        })
        assert parse_voucher_header(raw) is None

    def test_VAL03_bad_channel_id_and_signature_rejected(self):
        assert parse_voucher_header(header("0x1234")) is None
        assert parse_voucher_header(header("0x" + "00" * 32, signature="abcd")) is None
        assert parse_voucher_header(header("0x" + "00" * 32, signature="0xabc")) is None

    def test_VAL04_large_amounts_exact(self):
        big = str(2 ** 256 + 12345)
        voucher = parse_voucher_header(header("0x" + "00" * 32, amount=big))
        assert voucher.amount == 2 ** 256 + 12345

    def test_parse_or_raise(self):
        with pytest.raises(VoucherFormatError):
            parse_voucher_or_raise("{}")


# ─────────────────────────────────────────────────────────────
# DECISIONS
# ─────────────────────────────────────────────────────────────

class TestDecisions:

    def test_VAL05_fresh_channel_accepted(self, chain, consumer, validator, channel_id):
        voucher = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        result = validator.validate(voucher, 50_000)

        assert result.valid, result
        assert result.reason is None
        assert result.new_total == 100_000
        assert result.channel.total_charged == 0
        assert result.channel.deposit == DEPOSIT
        assert result.channel.consumer == consumer.address

    def test_VAL06_repeated_nonce_rejected(self, chain, consumer, validator, channel_id):
        first = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        result = validator.validate(first, 50_000)
        validator.store_voucher(first, result.channel, 100_000)

        replay = chain.sign(consumer, channel_id, amount=150_000, nonce=1)
        result = validator.validate(replay, 50_000)

        assert not result.valid
        assert result.reason == RejectReason.INVALID_NONCE
        assert result.channel.total_charged == 100_000

    def test_VAL06_lower_nonce_rejected(self, chain, consumer, validator, channel_id):
        v5 = chain.sign(consumer, channel_id, amount=100_000, nonce=5)
        validator.store_voucher(v5, validator.validate(v5, 1).channel, 10)

        v4 = chain.sign(consumer, channel_id, amount=200_000, nonce=4)
        assert validator.validate(v4, 1).reason == RejectReason.INVALID_NONCE

    def test_VAL07_amount_above_deposit_rejected(self, chain, consumer, validator, channel_id):
        voucher = chain.sign(consumer, channel_id, amount=2_000_000, nonce=2)
        result = validator.validate(voucher, 50_000)

        assert not result.valid
        assert result.reason == RejectReason.EXCEEDS_DEPOSIT

    def test_VAL08_insufficient_funds_returns_channel(self, chain, consumer, validator, channel_id):
        first = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        validator.store_voucher(first, validator.validate(first, 80_000).channel, 80_000)

        # covers 20_000 more, request needs 50_000 more
        second = chain.sign(consumer, channel_id, amount=100_000, nonce=2)
        result = validator.validate(second, 50_000)

        assert result.reason == RejectReason.INSUFFICIENT_FUNDS
        assert result.channel is not None
        assert result.channel.total_charged == 80_000

    def test_VAL09_unknown_channel(self, chain, consumer, validator):
        voucher = chain.sign(consumer, "0x" + "11" * 32, amount=1, nonce=1)
        assert validator.validate(voucher, 0).reason == RejectReason.CHANNEL_NOT_FOUND

    def test_VAL10_foreign_provider(self, chain, consumer, validator):
        other = Account.create().address
        cid = chain.open_channel(consumer.address, DEPOSIT, int(time.time()) + 60, provider=other)
        voucher = chain.sign(consumer, cid, amount=1000, nonce=1)

        assert validator.validate(voucher, 100).reason == RejectReason.WRONG_PROVIDER

    def test_VAL11_signature_for_other_channel(self, chain, consumer, validator, channel_id):
        other_cid = chain.open_channel(consumer.address, DEPOSIT, int(time.time()) + 60)
        signed_for_other = chain.sign(consumer, other_cid, amount=100_000, nonce=1)
        forged = VoucherHeader(
            channel_id= channel_id,
            amount=     signed_for_other.amount,
            nonce=      signed_for_other.nonce,
            signature=  signed_for_other.signature,
        )

        assert validator.validate(forged, 50_000).reason == RejectReason.INVALID_SIGNATURE

    def test_VAL12_signature_under_other_chain_id(self, chain, consumer, validator, channel_id):
        wrong_domain = VoucherDomain(
            chain_id=           137,
            verifying_contract= chain.domain.verifying_contract,
        )
        voucher = chain.sign(consumer, channel_id, 100_000, 1, domain=wrong_domain)

        assert validator.validate(voucher, 50_000).reason == RejectReason.INVALID_SIGNATURE

    def test_VAL12_signature_under_other_contract(self, chain, consumer, validator, channel_id):
        wrong_domain = VoucherDomain(
            chain_id=           chain.domain.chain_id,
            verifying_contract= "0x1C1918C99b6DcE977392E4131C91654d8aB71e64",
        )
        voucher = chain.sign(consumer, channel_id, 100_000, 1, domain=wrong_domain)

        assert validator.validate(voucher, 50_000).reason == RejectReason.INVALID_SIGNATURE

    def test_VAL13_signed_by_stranger(self, chain, validator, channel_id):
        stranger = Account.create()
        voucher = chain.sign(stranger, channel_id, amount=100_000, nonce=1)

        assert validator.validate(voucher, 50_000).reason == RejectReason.INVALID_SIGNATURE

    def test_VAL13_garbage_signature(self, chain, consumer, validator, channel_id):
        good = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        garbage = VoucherHeader(good.channel_id, good.amount, good.nonce, "0x" + "00" * 65)

        assert validator.validate(garbage, 50_000).reason == RejectReason.INVALID_SIGNATURE

    def test_VAL14_chain_failure_is_a_value(self, chain, consumer, validator, channel_id):
        chain.read_failures.add(channel_id)
        voucher = chain.sign(consumer, channel_id, amount=100_000, nonce=1)

        result = validator.validate(voucher, 50_000)

        assert not result.valid
        assert result.reason == RejectReason.VALIDATION_ERROR


# ─────────────────────────────────────────────────────────────
# COMMIT
# ─────────────────────────────────────────────────────────────

class TestCommit:

    def test_VAL15_store_persists_voucher_and_channel(self, chain, consumer, ledger, validator, channel_id):
        voucher = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        result = validator.validate(voucher, 50_000)
        validator.store_voucher(voucher, result.channel, 60_000)

        reloaded = ChannelLedger(ledger.ledger_path)
        channel = reloaded.get_channel(channel_id)
        assert channel.total_charged == 60_000
        assert channel.last_voucher.nonce == 1
        assert channel.last_voucher.amount == 100_000
        assert reloaded.stats().total_vouchers == 1
        assert reloaded.stats().total_earned == 60_000

    def test_VAL16_validate_is_read_only(self, chain, consumer, ledger, validator, channel_id):
        voucher = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        assert validator.validate(voucher, 50_000)

        assert ledger.get_channel(channel_id) is None
        assert not ledger.ledger_path.exists()

    def test_VAL17_legacy_channel_expiry_backfilled(self, chain, consumer, ledger, validator, channel_id):
        ledger.upsert_channel(channel_id, Channel(
            channel_id=       channel_id,
            consumer=         consumer.address,
            provider=         "",
            deposit=          DEPOSIT,
            total_charged=    0,
            expiry=           None,
            created_at=       1,
            last_activity_at= 1,
        ))
        voucher = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        result = validator.validate(voucher, 10)

        assert result.valid
        assert result.channel.expiry == chain.channels[channel_id].expiry
        assert result.channel.provider == chain.provider_address

    def test_VAL18_commit_post_call_shortfall(self, chain, consumer, ledger, validator, channel_id):
        voucher = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        assert validator.validate(voucher, 50_000)

        outcome = validator.commit(voucher, 150_000)

        assert not outcome
        assert outcome.reason == RejectReason.INSUFFICIENT_FUNDS_POST
        assert ledger.get_channel(channel_id) is None

    def test_commit_success_returns_receipt(self, chain, consumer, validator, channel_id):
        voucher = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        outcome = validator.commit(voucher, 70_000)

        assert outcome
        assert outcome.receipt.headers() == {
            "X-DRAIN-Cost":      "70000",
            "X-DRAIN-Total":     "70000",
            "X-DRAIN-Remaining": str(DEPOSIT - 70_000),
            "X-DRAIN-Channel":   channel_id,
        }

    def test_VAL19_total_charged_bounded_by_deposit(self, chain, consumer, ledger, validator, channel_id):
        charged = 0
        for nonce in range(1, 30):
            cost = 45_000
            amount = min(DEPOSIT, charged + cost + 5_000)
            voucher = chain.sign(consumer, channel_id, amount=amount, nonce=nonce)
            outcome = validator.commit(voucher, cost)
            if outcome:
                charged += cost
            channel = ledger.get_channel(channel_id)
            assert channel.total_charged <= channel.deposit

        assert ledger.get_channel(channel_id).total_charged == charged
        assert charged <= DEPOSIT

    def test_store_refuses_overdraw(self, chain, consumer, validator, channel_id):
        voucher = chain.sign(consumer, channel_id, amount=DEPOSIT, nonce=1)
        result = validator.validate(voucher, 1)

        with pytest.raises(LedgerError):
            validator.store_voucher(voucher, result.channel, DEPOSIT + 1)

    def test_VAL20_error_headers(self, chain, consumer, validator, channel_id):
        first = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        validator.commit(first, 90_000)

        second = chain.sign(consumer, channel_id, amount=120_000, nonce=2)
        result = validator.validate(second, 50_000)
        headers = payment_error_headers(result, second, 50_000)

        assert headers == {
            "X-DRAIN-Error":    "insufficient_funds",
            "X-DRAIN-Required": "50000",
            "X-DRAIN-Provided": "30000",
        }

    def test_VAL21_stale_snapshot_not_stored_twice(self, chain, consumer, ledger, validator, channel_id):
        voucher = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        first = validator.validate(voucher, 60_000)
        second = validator.validate(voucher, 60_000)
        assert first and second

        validator.store_voucher(voucher, first.channel, 60_000)
        with pytest.raises(LedgerError, match="changed since validation"):
            validator.store_voucher(voucher, second.channel, 60_000)

        stats = ledger.stats()
        assert stats.total_vouchers == 1
        assert stats.total_earned == 60_000
        assert ledger.get_channel(channel_id).total_charged == 60_000

    def test_VAL22_store_refuses_replayed_nonce(self, chain, consumer, ledger, validator, channel_id):
        voucher = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        validator.store_voucher(voucher, validator.validate(voucher, 10).channel, 10)

        current = ledger.get_channel(channel_id)
        with pytest.raises(LedgerError, match="nonce"):
            validator.store_voucher(voucher, current, 10)

        assert ledger.stats().total_vouchers == 1
        assert ledger.get_channel(channel_id).total_charged == 10

    def test_VAL23_upper_case_channel_id_stays_claimable(self, chain, consumer, ledger, validator, channel_id):
        signed = chain.sign(consumer, channel_id, amount=100_000, nonce=1)
        upper = VoucherHeader(
            channel_id= "0x" + channel_id[2:].upper(),
            amount=     signed.amount,
            nonce=      signed.nonce,
            signature=  signed.signature,
        )

        assert validator.commit(upper, 50_000)

        assert list(ledger.highest_unclaimed_per_channel()) == [channel_id]
        assert ledger.get_channel(channel_id).channel_id == channel_id
        assert ledger.mark_claimed(channel_id, "0xfeed") == 1
        assert ledger.highest_unclaimed_per_channel() == {}
