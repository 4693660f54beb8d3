import pytest

from ztd.errors import InvalidTransition
from ztd.runtime import ContainerRef, DeploymentAttempt, DeployState, HealthStatus, ordered


def test_ready_statuses():
    assert HealthStatus.NONE.ready
    assert HealthStatus.HEALTHY.ready
    assert not HealthStatus.STARTING.ready
    assert not HealthStatus.UNHEALTHY.ready


def test_short_id_and_ordering():
    a = ContainerRef(id="b" * 64, service="api", number=2)
    b = ContainerRef(id="a" * 64, service="api", number=1)
    assert a.short_id == "b" * 12
    assert ordered([a, b]) == [b, a]


def test_attempt_scale_target_is_twice_old_count():
    old = [ContainerRef(id=str(i) * 64, service="api") for i in range(3)]
    assert DeploymentAttempt(service="api", old_containers=old).scale_target == 6


def test_attempt_rejects_illegal_transitions():
    attempt = DeploymentAttempt(service="api", old_containers=[])
    attempt.advance(DeployState.SCALING)
    attempt.advance(DeployState.HEALTH_GATING)
    with pytest.raises(InvalidTransition):
        attempt.advance(DeployState.CLEANUP)
    attempt.advance(DeployState.ROLLING_BACK)
    attempt.advance(DeployState.FAILED)
    assert attempt.state.terminal
    with pytest.raises(InvalidTransition):
        attempt.advance(DeployState.SCALING)
