import pytest

from kubeapply.apply.upserter import (
    BACKOFF_SECONDS,
    CREATED,
    DRY_RUN,
    MAX_ATTEMPTS,
    PATCHED,
    UNCHANGED,
    DefaultUpserter,
    additive_patch,
    dry_run_uid,
)
from kubeapply.core.errors import ApplyConflictError, NotCreatableError, StoreError

from fakes import FakeCluster, FakeFactory, RecordingSleep, make_object, unreachable


def deployment(replicas=1, namespace="ns"):
    return make_object("Deployment", "web", namespace=namespace, api_version="apps/v1",
                       spec={"replicas": replicas})


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def sleep():
    return RecordingSleep()


def upserter(cluster, sleep, **kwargs):
    return DefaultUpserter(FakeFactory(cluster), namespace="ns", sleep=sleep, **kwargs)


def test_additive_patch():
    current = {"metadata": {"name": "a", "uid": "u"}, "spec": {"replicas": 1, "paused": False}}
    desired = {"metadata": {"name": "a", "labels": {"x": "y"}}, "spec": {"replicas": 3}}
    assert additive_patch(current, desired) == {"metadata": {"labels": {"x": "y"}}, "spec": {"replicas": 3}}
    assert additive_patch(current, {"spec": {"replicas": 1}}) == {}


def test_creates_missing_object(cluster, sleep):
    result = upserter(cluster, sleep).upsert(deployment(namespace=""))

    assert result.action == CREATED
    live = cluster.live("Deployment", "web", "ns")
    assert live is not None
    assert result.uid == live.uid
    assert sleep.calls == []


def test_create_drops_store_assigned_fields(cluster, sleep):
    obj = deployment()
    obj.uid = "stale"
    obj.resource_version = "99"
    upserter(cluster, sleep).upsert(obj)

    sent = cluster.creates[0]["metadata"]
    assert "uid" not in sent
    assert "resourceVersion" not in sent


def test_not_creatable(cluster, sleep):
    with pytest.raises(NotCreatableError):
        upserter(cluster, sleep, create=False).upsert(deployment())
    assert cluster.creates == []


def test_unchanged_object_is_not_written(cluster, sleep):
    live = cluster.add(deployment())
    result = upserter(cluster, sleep).upsert(live.copy())

    assert result.action == UNCHANGED
    assert result.uid == live.uid
    assert cluster.patches == []


def test_patch_carries_resource_version(cluster, sleep):
    live = cluster.add(deployment(replicas=1))
    result = upserter(cluster, sleep).upsert(deployment(replicas=3))

    assert result.action == PATCHED
    assert result.uid == live.uid
    content_type, patch = cluster.patches[0]
    assert content_type == "application/merge-patch+json"
    assert patch["metadata"]["resourceVersion"] == live.resource_version
    assert cluster.live("Deployment", "web", "ns").body["spec"]["replicas"] == 3


def test_conflicts_then_success(cluster, sleep):
    """Four conflicts, success on the fifth attempt, four backoff sleeps."""
    live = cluster.add(deployment(replicas=1))
    cluster.conflicts = 4

    result = upserter(cluster, sleep).upsert(deployment(replicas=3))

    assert result.action == PATCHED
    assert result.uid == live.uid
    assert len(cluster.patches) == 5
    assert sleep.calls == [BACKOFF_SECONDS] * 4


def test_conflict_budget_is_bounded(cluster, sleep):
    cluster.add(deployment(replicas=1))
    cluster.conflicts = 1000

    with pytest.raises(ApplyConflictError) as excinfo:
        upserter(cluster, sleep).upsert(deployment(replicas=3))

    assert excinfo.value.attempts == MAX_ATTEMPTS
    assert len(cluster.patches) == MAX_ATTEMPTS
    assert len(sleep.calls) == MAX_ATTEMPTS - 1


def test_conflict_refreshes_resource_version(cluster, sleep):
    cluster.add(deployment(replicas=1))
    cluster.objects[("Deployment", "ns", "web")]["metadata"]["resourceVersion"] = "42"

    # Read before someone else wrote
    obj = deployment(replicas=3)
    obj.resource_version = "7"
    result = upserter(cluster, sleep).upsert(obj)

    assert result.action == PATCHED
    assert obj.resource_version == "42"
    assert [p[1]["metadata"]["resourceVersion"] for p in cluster.patches] == ["7", "42"]
    assert sleep.calls == [BACKOFF_SECONDS]


def test_other_patch_errors_are_not_retried(cluster, sleep):
    cluster.add(deployment(replicas=1))
    cluster.patch_errors.append(unreachable())

    with pytest.raises(StoreError):
        upserter(cluster, sleep).upsert(deployment(replicas=3))
    assert len(cluster.patches) == 1
    assert sleep.calls == []


def test_dry_run_makes_no_calls(cluster, sleep):
    result = upserter(cluster, sleep, dry_run=True).upsert(deployment())

    assert result.action == DRY_RUN
    assert result.uid == dry_run_uid(deployment()) == "dry-run:apps/v1:Deployment:ns.web"
    assert cluster.gets == 0
    assert cluster.creates == [] and cluster.patches == []


def test_dry_run_keeps_known_uid(cluster, sleep):
    obj = deployment()
    obj.uid = "abc"
    assert upserter(cluster, sleep, dry_run=True).upsert(obj).uid == "abc"


def test_invalid_attempt_budget(cluster, sleep):
    with pytest.raises(ValueError):
        upserter(cluster, sleep, max_attempts=0)
