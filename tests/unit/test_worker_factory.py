import json
from contextlib import contextmanager

import pytest

import pgoutput_messages as pg
from rowcol_sync.cdc.service import build_replication_worker
from rowcol_sync.cdc.source import SlotChangeSource, StreamingChangeSource


class ListSource:
    def __init__(self, *batches):
        self._batches = list(batches)
        self.acks = []

    def fetch(self, _max_messages):
        return self._batches.pop(0) if self._batches else []

    def acknowledge(self, lsn):
        self.acks.append(lsn)

    def rewind(self):
        pass

    def close(self):
        pass


class ListStore:
    def __init__(self):
        self.executed = []

    def execute(self, statement):
        self.executed.append(statement)

    @contextmanager
    def transaction(self):
        yield

    def close(self):
        pass


@pytest.mark.unit
def test_sql_mode_builds_slot_source(make_settings, metrics):
    worker = build_replication_worker(
        make_settings(), store=ListStore(), metrics=metrics
    )

    assert isinstance(worker.source, SlotChangeSource)
    assert worker.source.slot_name == "rowcol_slot"
    assert worker.source.publication == "htap_pub"


@pytest.mark.unit
def test_stream_mode_builds_streaming_source(make_settings, metrics):
    worker = build_replication_worker(
        make_settings(cdc_source_mode="stream"), store=ListStore(), metrics=metrics
    )

    assert isinstance(worker.source, StreamingChangeSource)


@pytest.mark.unit
def test_settings_flow_into_decoder_and_encoder(make_settings, metrics):
    batch = pg.as_stream(
        pg.begin(0x100, 1),
        pg.relation(1, "schema_changes", [("id", pg.INT8), ("ddl", pg.TEXT)], namespace="rowcol"),
        pg.relation(2, "orders", pg.ORDERS_COLUMNS),
        pg.insert(1, ["1", "CREATE TABLE orders_cs (id int, note text) USING columnar;"]),
        pg.insert(2, ["7", "x"]),
        pg.commit(0x100, 0x108),
    )
    store = ListStore()
    settings = make_settings(
        relay_relation="schema_changes",
        relay_namespace="rowcol",
        relay_payload_column=1,
        columnar_suffix="_cs",
    )
    worker = build_replication_worker(
        settings, source=ListSource(batch), store=store, metrics=metrics
    )

    worker.run_cycle()

    assert store.executed == [
        "CREATE TABLE orders_cs (id int, note text) USING columnar;",
        "INSERT INTO orders_cs VALUES (7, 'x');",
    ]


@pytest.mark.unit
def test_file_backend_persists_watermark(make_settings, metrics, tmp_path):
    settings = make_settings(cdc_checkpoint_backend="file")
    batch = pg.as_stream(
        pg.begin(0x100, 1),
        pg.relation(2, "orders", pg.ORDERS_COLUMNS),
        pg.insert(2, ["7", "x"]),
        pg.commit(0x100, 0x108),
    )
    worker = build_replication_worker(
        settings, source=ListSource(batch), store=ListStore(), metrics=metrics
    )

    worker.run_cycle()

    stored = json.loads(settings.cdc_resume_path.read_text())
    assert stored == {"rowcol_slot": 0x100}
