import json

import pytest

from kubeapply.apply.engine import (
    PHASE_ANNOTATE,
    PHASE_DELETE,
    PHASE_MERGE,
    PHASE_SOURCE,
    PHASE_UPSERT,
    ApplyConfig,
    ApplyEngine,
    DeleteEngine,
)
from kubeapply.apply.upserter import CREATED, DRY_RUN, PATCHED, UNCHANGED
from kubeapply.core.errors import ApplyError, DecodingError, NotCreatableError, SourceError, StoreError
from kubeapply.core.models import (
    ANNOTATION_GC_TAG,
    ANNOTATION_MANAGED,
    DEPLOY_MANAGER,
    LABEL_DEPLOY_MANAGER,
)
from kubeapply.source.manifests import ObjectSource

from fakes import (
    FakeCluster,
    FakeDiscovery,
    FakeFactory,
    RecordingSleep,
    StaticSource,
    api_resource,
    make_object,
    unreachable,
)

RESOURCES = [
    api_resource("Namespace", "namespaces", namespaced=False),
    api_resource("ConfigMap", "configmaps"),
    api_resource("Service", "services"),
    api_resource("Deployment", "deployments", group_version="apps/v1"),
]


def config_map(name, **data):
    return make_object("ConfigMap", name, data=data or {"k": "v"})


def engine_for(cluster, objects, namespace="ns", **config):
    return ApplyEngine(
        ApplyConfig(env_name="test", **config),
        StaticSource(objects),
        FakeFactory(cluster),
        FakeDiscovery(RESOURCES),
        namespace=namespace,
        sleep=RecordingSleep(),
    )


@pytest.fixture
def cluster():
    return FakeCluster()


def test_new_object_is_created_and_survives_gc(cluster):
    """Service with no namespace at input lands in the run's namespace and is not collected."""
    service = make_object("Service", "s1", spec={"ports": [{"port": 80}]})

    report = engine_for(cluster, [service], gc_tag="rel-1").apply()

    live = cluster.live("Service", "s1", "ns")
    assert live is not None
    assert report.results[0].action == CREATED
    assert report.results[0].uid == live.uid
    assert report.garbage_collected == []
    assert cluster.deletes == []

    assert live.get_annotation(ANNOTATION_GC_TAG) == "rel-1"
    assert live.labels[LABEL_DEPLOY_MANAGER] == DEPLOY_MANAGER
    assert "pristine" in json.loads(live.get_annotation(ANNOTATION_MANAGED))


def test_reapply_without_changes_writes_nothing(cluster):
    objects = [config_map("a"), make_object("Service", "s1", spec={"ports": [{"port": 80}]})]
    first = engine_for(cluster, objects, gc_tag="rel-1").apply()
    uids = {r.description: r.uid for r in first.results}

    second = engine_for(cluster, objects, gc_tag="rel-1").apply()

    assert cluster.patches == []
    assert len(cluster.creates) == 2
    assert [r.action for r in second.results] == [UNCHANGED, UNCHANGED]
    assert {r.description: r.uid for r in second.results} == uids


def test_changed_object_is_reported_patched(cluster):
    engine_for(cluster, [config_map("a", k="1")]).apply()
    report = engine_for(cluster, [config_map("a", k="2")]).apply()

    assert report.results[0].action == PATCHED
    assert len(cluster.patches) == 1
    assert cluster.live("ConfigMap", "a", "ns").body["data"] == {"k": "2"}


def test_dropped_objects_are_garbage_collected(cluster):
    engine_for(cluster, [config_map("a"), config_map("b")], gc_tag="rel-1").apply()
    report = engine_for(cluster, [config_map("a")], gc_tag="rel-1").apply()

    assert report.garbage_collected == ["configmaps ns.b (v1)"]
    assert cluster.live("ConfigMap", "b", "ns") is None
    assert cluster.live("ConfigMap", "a", "ns") is not None


def test_skip_gc_and_untagged_runs_leave_objects(cluster):
    engine_for(cluster, [config_map("a"), config_map("b")], gc_tag="rel-1").apply()

    report = engine_for(cluster, [config_map("a")], gc_tag="rel-1", skip_gc=True).apply()
    assert report.garbage_collected == []

    report = engine_for(cluster, [config_map("a")]).apply()
    assert report.garbage_collected == []
    assert cluster.live("ConfigMap", "b", "ns") is not None


def test_dependency_order_is_respected(cluster):
    objects = [
        make_object("Deployment", "web", api_version="apps/v1", spec={"replicas": 1}),
        make_object("Namespace", "ns"),
        config_map("settings"),
    ]
    engine_for(cluster, objects).apply()
    assert [c["kind"] for c in cluster.creates] == ["Namespace", "ConfigMap", "Deployment"]


def test_not_creatable_is_reported_with_phase(cluster):
    with pytest.raises(ApplyError) as excinfo:
        engine_for(cluster, [config_map("a")], create=False).apply()

    err = excinfo.value
    assert err.phase == PHASE_UPSERT
    assert err.description == "configmaps a"
    assert isinstance(err.cause, NotCreatableError)
    assert cluster.creates == []


class UnreachableDiscovery(FakeDiscovery):

    def server_resources(self):
        raise unreachable()


def test_discovery_failure_names_object_by_identity(cluster):
    engine = ApplyEngine(ApplyConfig(env_name="test"), StaticSource([config_map("a")]),
                         FakeFactory(cluster), UnreachableDiscovery(), namespace="ns")

    with pytest.raises(ApplyError) as excinfo:
        engine.apply()

    err = excinfo.value
    assert err.phase == PHASE_ANNOTATE
    assert err.description == "ConfigMap a"
    assert isinstance(err.cause, StoreError)
    assert "ConfigMap a" in str(err)
    assert cluster.creates == []


def test_corrupt_pristine_aborts_in_merge_phase(cluster):
    broken = config_map("a")
    broken.body["metadata"]["namespace"] = "ns"
    broken.set_annotation(ANNOTATION_MANAGED, json.dumps({"pristine": "???"}))
    cluster.add(broken)

    with pytest.raises(ApplyError) as excinfo:
        engine_for(cluster, [config_map("a"), config_map("z")]).apply()

    assert excinfo.value.phase == PHASE_MERGE
    assert isinstance(excinfo.value.cause, DecodingError)
    # The run stops at the failing object
    assert cluster.creates == []


def test_source_errors_are_wrapped(cluster):
    class BrokenSource(ObjectSource):
        def objects(self, env_name, component_names=()):
            raise SourceError("no manifests")

    engine = ApplyEngine(ApplyConfig(env_name="prod"), BrokenSource(), FakeFactory(cluster), FakeDiscovery())
    with pytest.raises(ApplyError) as excinfo:
        engine.apply()
    assert excinfo.value.phase == PHASE_SOURCE


def test_dry_run_suppresses_every_mutation(cluster):
    engine_for(cluster, [config_map("a", k="1"), config_map("b")], gc_tag="rel-1").apply()
    creates = len(cluster.creates)

    report = engine_for(cluster, [config_map("a", k="2"), config_map("c")],
                        gc_tag="rel-1", dry_run=True).apply()

    assert report.dry_run is True
    assert [r.action for r in report.results] == [DRY_RUN, DRY_RUN]
    assert report.results[1].uid == "dry-run:v1:ConfigMap:c"
    assert report.garbage_collected == ["configmaps ns.b (v1)"]
    assert len(cluster.creates) == creates
    assert cluster.patches == [] and cluster.deletes == []
    assert cluster.live("ConfigMap", "a", "ns").body["data"] == {"k": "1"}


def test_report_summary(cluster):
    engine_for(cluster, [config_map("a")]).apply()
    report = engine_for(cluster, [config_map("a"), config_map("b")]).apply()

    summary = report.summary()
    assert summary["total_objects"] == 2
    assert summary["actions"] == {UNCHANGED: 1, CREATED: 1}
    assert summary["garbage_collected"] == 0


def test_delete_engine_reverse_order(cluster):
    objects = [make_object("Namespace", "app"), make_object("ConfigMap", "cfg", namespace="app")]
    for obj in objects:
        cluster.add(obj)

    deleter = DeleteEngine(ApplyConfig(env_name="test"), StaticSource(objects), FakeFactory(cluster),
                           FakeDiscovery(RESOURCES), grace_period=10)
    deleted = deleter.delete()

    assert deleted == ["configmaps app.cfg", "namespaces app"]
    assert [key for key, _ in cluster.deletes] == [("ConfigMap", "app", "cfg"), ("Namespace", "", "app")]
    assert cluster.deletes[0][1]["gracePeriodSeconds"] == 10
    assert cluster.objects == {}


def test_delete_engine_skips_missing_and_honours_dry_run(cluster):
    objects = [config_map("present"), config_map("missing")]
    cluster.add(make_object("ConfigMap", "present", namespace="ns"))

    dry = DeleteEngine(ApplyConfig(dry_run=True), StaticSource(objects), FakeFactory(cluster),
                       FakeDiscovery(RESOURCES), namespace="ns")
    assert dry.delete() == ["configmaps present", "configmaps missing"]
    assert cluster.deletes == []

    real = DeleteEngine(ApplyConfig(), StaticSource(objects), FakeFactory(cluster),
                        FakeDiscovery(RESOURCES), namespace="ns")
    assert real.delete() == ["configmaps present"]
    assert cluster.live("ConfigMap", "present", "ns") is None


def test_delete_engine_discovery_failure_is_wrapped(cluster):
    objects = [make_object("ConfigMap", "cfg", namespace="app")]
    cluster.add(objects[0])

    deleter = DeleteEngine(ApplyConfig(), StaticSource(objects), FakeFactory(cluster), UnreachableDiscovery())
    with pytest.raises(ApplyError) as excinfo:
        deleter.delete()

    assert excinfo.value.phase == PHASE_DELETE
    assert excinfo.value.description == "ConfigMap app.cfg"
    assert cluster.deletes == []


def test_delete_engine_failure_names_resource(cluster):
    objects = [make_object("ConfigMap", "cfg", namespace="app")]
    cluster.add(objects[0])
    cluster.delete_errors["cfg"] = unreachable()

    deleter = DeleteEngine(ApplyConfig(), StaticSource(objects), FakeFactory(cluster), FakeDiscovery(RESOURCES))
    with pytest.raises(ApplyError) as excinfo:
        deleter.delete()

    assert excinfo.value.phase == PHASE_DELETE
    assert excinfo.value.description == "configmaps app.cfg"
