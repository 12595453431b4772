import pytest

from rowcol_sync.cdc.buffers import TransactionBufferManager
from rowcol_sync.cdc.replay import ReplayError, ReplayExecutor
from rowcol_sync.db.store import StoreUnavailable


class RecordingExecutor:
    def __init__(self, fail_on=None, error=None):
        self.executed = []
        self._fail_on = fail_on
        self._error = error or RuntimeError("relation does not exist")

    def execute(self, statement):
        if statement == self._fail_on:
            raise self._error
        self.executed.append(statement)


def _close(manager, xid, commit_lsn, *statements):
    handle = manager.open(xid=xid, commit_lsn=commit_lsn)
    for statement in statements:
        manager.append(handle, statement)
    manager.close(handle, commit_lsn=commit_lsn, end_lsn=commit_lsn + 8)
    return handle


@pytest.mark.unit
def test_replays_buffers_in_commit_order():
    manager = TransactionBufferManager()
    _close(manager, 1, 100, "s1", "s2")
    _close(manager, 2, 200, "s3")
    executor = RecordingExecutor()

    summary = ReplayExecutor(manager, executor).replay_all()

    assert executor.executed == ["s1", "s2", "s3"]
    assert summary.transactions == 2
    assert summary.statements == 3
    assert summary.last_commit_lsn == 200
    assert manager.ready_count == 0


@pytest.mark.unit
def test_open_buffer_is_left_alone():
    manager = TransactionBufferManager()
    _close(manager, 1, 100, "s1")
    pending = manager.open(xid=2)
    manager.append(pending, "s2")
    executor = RecordingExecutor()

    ReplayExecutor(manager, executor).replay_all()

    assert executor.executed == ["s1"]
    assert manager.current == pending


@pytest.mark.unit
def test_failure_raises_replay_error_with_statement():
    manager = TransactionBufferManager()
    handle = _close(manager, 1, 100, "ok", "boom", "never")
    executor = RecordingExecutor(fail_on="boom")

    with pytest.raises(ReplayError) as excinfo:
        ReplayExecutor(manager, executor).replay_all()

    assert excinfo.value.statement == "boom"
    assert excinfo.value.handle == handle
    assert executor.executed == ["ok"]


@pytest.mark.unit
def test_store_unavailable_propagates_unwrapped():
    manager = TransactionBufferManager()
    _close(manager, 1, 100, "s1")
    executor = RecordingExecutor(fail_on="s1", error=StoreUnavailable("gone"))

    with pytest.raises(StoreUnavailable):
        ReplayExecutor(manager, executor).replay_all()


@pytest.mark.unit
def test_buffers_at_or_below_watermark_are_skipped():
    manager = TransactionBufferManager()
    _close(manager, 1, 100, "old")
    _close(manager, 2, 200, "edge")
    _close(manager, 3, 300, "new")
    executor = RecordingExecutor()

    summary = ReplayExecutor(manager, executor).replay_all(watermark=200)

    assert executor.executed == ["new"]
    assert summary.skipped == 2
    assert summary.transactions == 1
    assert summary.last_commit_lsn == 300


@pytest.mark.unit
def test_implicit_buffer_without_commit_lsn_is_always_replayed():
    manager = TransactionBufferManager()
    handle = manager.open(implicit=True)
    manager.append(handle, "lonely")
    manager.close(handle, end_lsn=50)
    executor = RecordingExecutor()

    summary = ReplayExecutor(manager, executor).replay_all(watermark=1000)

    assert executor.executed == ["lonely"]
    assert summary.last_commit_lsn is None
