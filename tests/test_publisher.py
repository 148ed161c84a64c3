"""Tests for the Dispatcher

Publishers are mocks; the validator uses a mocked capability cache.
"""

import threading
from unittest.mock import Mock

import pytest

from core.errors import AllTargetsFailed, ValidationError
from socials.publisher import Dispatcher, error_message
from socials.targets import Targets
from socials.types import DeliveryFailure, DeliverySuccess


@pytest.fixture
def dispatcher(validator, publishers):
    return Dispatcher(validator, publishers=publishers)


class TestAggregation:
    def test_all_succeed(self, dispatcher, make_request, publishers):
        outcome = dispatcher.dispatch(make_request(client_request_id="req-1"))

        assert outcome.overall == "success"
        assert list(outcome.deliveries) == ["x", "bluesky", "mastodon"]
        assert all(result.ok for result in outcome.deliveries.values())
        assert outcome.client_request_id == "req-1"
        assert outcome.posted_at.tzinfo is not None
        for publisher in publishers.values():
            publisher.publish.assert_called_once()

    def test_one_failure_is_partial(self, validator, make_request, publishers, make_publisher):
        publishers["bluesky"] = make_publisher("bluesky", error=RuntimeError("Bluesky said no"))
        dispatcher = Dispatcher(validator, publishers=publishers)

        outcome = dispatcher.dispatch(make_request())

        assert outcome.overall == "partial"
        assert len(outcome.deliveries) == 3
        failure = outcome.deliveries["bluesky"]
        assert isinstance(failure, DeliveryFailure)
        assert failure.to_dict() == {"ok": False, "platform": "bluesky", "error": "Bluesky said no"}
        assert outcome.deliveries["x"].ok is True
        assert outcome.deliveries["mastodon"].ok is True

    def test_all_failures_raise(self, validator, make_request, make_publisher):
        publishers = {name: make_publisher(name, error=RuntimeError(f"{name} down")) for name in ("x", "bluesky", "mastodon")}
        dispatcher = Dispatcher(validator, publishers=publishers)

        with pytest.raises(AllTargetsFailed) as exc_info:
            dispatcher.dispatch(make_request())

        assert exc_info.value.status == 502
        assert set(exc_info.value.deliveries) == {"x", "bluesky", "mastodon"}
        problem = exc_info.value.to_problem()
        assert problem["deliveries"]["x"] == {"ok": False, "platform": "x", "error": "x down"}

    def test_only_requested_targets_are_called(self, dispatcher, make_request, publishers, x_target):
        outcome = dispatcher.dispatch(make_request(targets=Targets(x=x_target)))

        assert list(outcome.deliveries) == ["x"]
        publishers["bluesky"].publish.assert_not_called()
        publishers["mastodon"].publish.assert_not_called()

    def test_publisher_receives_credentials_and_segments(self, dispatcher, make_request, publishers, x_target):
        request = make_request(texts=("one", "two"))
        dispatcher.dispatch(request)

        credentials, segments = publishers["x"].publish.call_args[0]
        assert credentials == x_target
        assert [s.text for s in segments] == ["one", "two"]

    def test_missing_publisher_is_a_target_failure(self, validator, make_request, make_publisher):
        dispatcher = Dispatcher(validator, publishers={"x": make_publisher("x")})

        outcome = dispatcher.dispatch(make_request())

        assert outcome.overall == "partial"
        assert "No publisher configured" in outcome.deliveries["mastodon"].error_message

    def test_malformed_publisher_result_is_a_target_failure(self, validator, make_request, publishers):
        publishers["bluesky"].publish.return_value = None

        outcome = Dispatcher(validator, publishers=publishers).dispatch(make_request())

        assert outcome.overall == "partial"
        assert isinstance(outcome.deliveries["bluesky"], DeliveryFailure)
        assert "NoneType" in outcome.deliveries["bluesky"].error_message
        assert outcome.deliveries["x"].ok and outcome.deliveries["mastodon"].ok


class TestValidationFirst:
    def test_invalid_request_never_publishes(self, dispatcher, make_request, publishers):
        with pytest.raises(ValidationError):
            dispatcher.dispatch(make_request(texts=("x" * 400,)))

        for publisher in publishers.values():
            publisher.publish.assert_not_called()


class TestConcurrency:
    def test_targets_run_in_parallel(self, validator, make_request):
        """Every publisher waits at a barrier; sequential calls would time out"""
        barrier = threading.Barrier(3, timeout=5)

        def _publish(platform):
            def _inner(credentials, segments):
                barrier.wait()
                return DeliverySuccess(platform=platform, external_id=f"{platform}-1")

            return _inner

        publishers = {}
        for name in ("x", "bluesky", "mastodon"):
            publisher = Mock()
            publisher.publish.side_effect = _publish(name)
            publishers[name] = publisher

        outcome = Dispatcher(validator, publishers=publishers).dispatch(make_request())

        assert outcome.overall == "success"


class TestNosocial:
    def test_no_publisher_is_invoked(self, validator, make_request, publishers):
        dispatcher = Dispatcher(validator, publishers=publishers, nosocial=True)

        outcome = dispatcher.dispatch(make_request())

        assert outcome.overall == "success"
        for name, result in outcome.deliveries.items():
            assert result.external_id.startswith("nosocial-")
            publishers[name].publish.assert_not_called()


class TestMonitor:
    def test_records_dispatch(self, validator, make_request, publishers):
        monitor = Mock()
        Dispatcher(validator, publishers=publishers, monitor=monitor).dispatch(make_request())

        monitor.record_dispatch.assert_called_once_with("success", {"x": True, "bluesky": True, "mastodon": True})

    def test_monitor_errors_do_not_break_dispatch(self, validator, make_request, publishers):
        monitor = Mock()
        monitor.record_dispatch.side_effect = OSError("disk full")

        outcome = Dispatcher(validator, publishers=publishers, monitor=monitor).dispatch(make_request())

        assert outcome.overall == "success"


class TestErrorMessage:
    def test_uses_exception_text(self):
        assert error_message(RuntimeError("boom")) == "boom"

    def test_falls_back_for_empty_message(self):
        assert error_message(RuntimeError()) == "Unknown publishing error"
