import pytest

from roofedit.domain.measurement import Measurement
from roofedit.storage import LocalFileStorage, LocalMeasurementStore, MeasurementStoreError
from roofedit.storage.protocols import save_snapshot
from roofedit.storage.sql import SqlMeasurementStore

from conftest import square


@pytest.fixture
def local_store(tmp_path):
    return LocalMeasurementStore(LocalFileStorage(tmp_path / "measurements"))


class TestLocalMeasurementStore:
    def test_save_and_load(self, local_store, two_facet_measurement):
        outcome = save_snapshot(local_store, two_facet_measurement)

        assert outcome.ok
        assert outcome.version == 1
        assert outcome.saved_at is not None
        assert local_store.load("roof-1") == two_facet_measurement

    def test_missing_measurement_loads_as_none(self, local_store):
        assert local_store.load("nope") is None

    def test_previous_versions_are_capped(self, tmp_path, local_store, two_facet_measurement):
        for n in range(25):
            outcome = save_snapshot(
                local_store,
                two_facet_measurement.evolve(facets=(square("f", 0.1, 0.1, 0.2, float(n + 1)),)),
            )

        assert outcome.version == 25
        directory = tmp_path / "measurements" / "roof-1"
        versions = sorted(int(p.stem.split("_")[1]) for p in directory.glob("version_*.json"))
        assert versions == list(range(5, 25))
        assert local_store.load("roof-1").facets[0].area == 25.0

    def test_list_summaries(self, local_store, two_facet_measurement):
        save_snapshot(local_store, two_facet_measurement)
        save_snapshot(local_store, two_facet_measurement.evolve(id="roof-2"))

        summaries = local_store.list_summaries()

        assert [s["id"] for s in summaries] == ["roof-1", "roof-2"]
        assert summaries[0]["summary"]["totalArea"] == 200.0

    def test_unsafe_id_is_rejected(self, local_store):
        with pytest.raises(MeasurementStoreError):
            save_snapshot(local_store, Measurement(id="../"))


class TestSqlMeasurementStore:
    def test_save_increments_version(self, app, two_facet_measurement):
        with app.app_context():
            store = SqlMeasurementStore()
            assert save_snapshot(store, two_facet_measurement).version == 1
            outcome = save_snapshot(store, two_facet_measurement.evolve(facets=()))

            assert outcome.version == 2
            assert store.load("roof-1").facets == ()
            assert store.load("missing") is None

    def test_list_summaries(self, app, two_facet_measurement):
        with app.app_context():
            store = SqlMeasurementStore()
            save_snapshot(store, two_facet_measurement)

            (summary,) = store.list_summaries()

            assert summary["id"] == "roof-1"
            assert summary["version"] == 1
            assert summary["summary"]["facetCount"] == 2
