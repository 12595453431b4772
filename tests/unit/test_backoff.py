import pytest

from rowcol_sync.cdc.logical_replication import (
    ExponentialBackoff,
    int_to_lsn,
    lsn_to_int,
)


@pytest.mark.unit
def test_delays_grow_until_capped():
    backoff = ExponentialBackoff(
        base_interval=1.0, multiplier=2.0, max_interval=5.0, jitter=False
    )

    delays = [backoff.next_delay() for _ in range(5)]

    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert backoff.attempts == 5


@pytest.mark.unit
def test_reset_restarts_sequence():
    backoff = ExponentialBackoff(base_interval=0.5, jitter=False)
    backoff.next_delay()
    backoff.next_delay()

    backoff.reset()

    assert backoff.next_delay() == 0.5


@pytest.mark.unit
def test_jitter_scales_delay():
    backoff = ExponentialBackoff(base_interval=2.0, random_fn=lambda: 0.25)

    assert backoff.next_delay() == 0.5


@pytest.mark.unit
@pytest.mark.parametrize(
    "kwargs",
    [
        {"base_interval": 0},
        {"multiplier": 0.5},
        {"base_interval": 10.0, "max_interval": 1.0},
    ],
)
def test_invalid_configuration_is_rejected(kwargs):
    with pytest.raises(ValueError):
        ExponentialBackoff(**kwargs)


@pytest.mark.unit
def test_lsn_text_conversion():
    assert int_to_lsn(0x16B3748) == "0/16B3748"
    assert lsn_to_int("1/0000000A") == (1 << 32) | 10
    assert lsn_to_int(int_to_lsn(0xAB_0000_0001)) == 0xAB_0000_0001

    with pytest.raises(ValueError):
        lsn_to_int("16B3748")
