"""
Tests for ProctorSession

State machine transitions, resource ownership and the end-to-end exam flows.
"""

import asyncio

import pytest

from conftest import (
    FakeCamera,
    GatedFaceOracle,
    ScriptedFaceOracle,
    ScriptedObjectOracle,
    SlowFaceOracle,
    blank_frame,
)
from examguard.proctor.capture import RemoteCaptureDevice
from examguard.proctor.events import DetectionFrame, ProhibitedObjectFlags, ReasonCode, ViolationEvent
from examguard.proctor.exceptions import (
    CameraAcquisitionError,
    OracleLoadError,
    SessionStateError,
    SetupNotReadyError,
)
from examguard.proctor.oracle import PerceptionOracleAdapter
from examguard.proctor.sampler import SamplingMode
from examguard.proctor.state import AssessmentInfo, GradingPayload, Outcome, SessionPhase


def detection(faces=1, persons=1, phone=False):
    return DetectionFrame(
        timestamp=0.0,
        face_count=faces,
        person_count=persons,
        prohibited=ProhibitedObjectFlags(phone=phone)
    )


async def ready_session(make_session, **kwargs):
    session = make_session(**kwargs)
    session.begin_setup()
    await session.prepare()
    return session


async def active_session(make_session, **kwargs):
    session = await ready_session(make_session, **kwargs)
    await session.start()
    return session


class TestSetup:
    """Tests for IDLE -> SETUP -> ACTIVE"""

    @pytest.mark.asyncio
    async def test_prepare_acquires_camera_and_loads_models(self, make_session, camera, face_oracle):
        session = await ready_session(make_session)

        assert session.phase is SessionPhase.SETUP
        assert session.camera_ready
        assert session.models_ready
        assert len(camera.acquired) == 1
        assert face_oracle.loads == 1
        assert session.sampler.mode is SamplingMode.PREVIEW
        session.close()

    @pytest.mark.asyncio
    async def test_setup_does_not_start_countdown(self, make_session):
        session = await ready_session(make_session)
        await asyncio.sleep(0.05)

        assert session.state.remaining_seconds == 600
        session.close()

    @pytest.mark.asyncio
    async def test_preview_updates_status_only(self, make_session):
        """Preview detections are shown but never classified"""
        session = await ready_session(make_session)

        session.handle_detection(detection(faces=0, persons=3, phone=True), SamplingMode.PREVIEW)

        assert session.phase is SessionPhase.SETUP
        assert session.snapshot().preview.persons == 3
        assert session.snapshot().preview.phone
        session.close()

    @pytest.mark.asyncio
    async def test_camera_failure_is_retryable(self, make_session):
        camera = FakeCamera(fail_times=1)
        session = make_session(camera=camera)
        session.begin_setup()

        with pytest.raises(CameraAcquisitionError):
            await session.prepare()

        assert session.phase is SessionPhase.SETUP
        assert session.last_error == "Camera access denied"
        assert not session.camera_ready

        await session.prepare()

        assert session.camera_ready
        assert session.last_error is None
        session.close()

    @pytest.mark.asyncio
    async def test_model_failure_is_retryable(self, make_session, object_oracle):
        face_oracle = ScriptedFaceOracle(fail_load=True)
        session = make_session(adapter=PerceptionOracleAdapter(face_oracle, object_oracle))
        session.begin_setup()

        with pytest.raises(OracleLoadError):
            await session.prepare()

        assert session.phase is SessionPhase.SETUP
        assert "AI detection models" in session.last_error

        face_oracle.fail_load = False
        await session.prepare()

        assert session.models_ready
        session.close()

    @pytest.mark.asyncio
    async def test_unexpected_camera_error_is_wrapped(self, make_session):
        class BrokenCamera(FakeCamera):
            async def acquire(self, constraints):
                raise PermissionError("denied by OS")

        session = make_session(camera=BrokenCamera())
        session.begin_setup()

        with pytest.raises(CameraAcquisitionError):
            await session.prepare()

    @pytest.mark.asyncio
    async def test_start_requires_ready(self, make_session):
        session = make_session()
        session.begin_setup()

        with pytest.raises(SetupNotReadyError):
            await session.start()

        assert session.phase is SessionPhase.SETUP

    @pytest.mark.asyncio
    async def test_start_reacquires_stale_stream(self, make_session, camera):
        session = await ready_session(make_session)
        first = session.stream
        first.close()

        await session.start()

        assert session.phase is SessionPhase.ACTIVE
        assert session.stream is not first
        assert len(camera.acquired) == 2
        session.close()

    @pytest.mark.asyncio
    async def test_start_activates_everything(self, make_session):
        session = await active_session(make_session)

        assert session.phase is SessionPhase.ACTIVE
        assert session.focus_monitor.is_attached
        assert session.sampler.mode is SamplingMode.ACTIVE
        assert session.state.consecutive_no_face_ticks == 0
        session.close()

    @pytest.mark.asyncio
    async def test_cancel_releases_camera(self, make_session, camera):
        session = await ready_session(make_session)
        stream = session.stream

        session.cancel()

        assert session.phase is SessionPhase.IDLE
        assert stream in camera.released
        assert not session.sampler.is_running
        assert session.result is None

    def test_begin_setup_twice(self, make_session):
        session = make_session()
        session.begin_setup()

        with pytest.raises(SessionStateError):
            session.begin_setup()

    def test_submit_outside_active(self, make_session):
        session = make_session()

        with pytest.raises(SessionStateError):
            session.submit()


class TestActiveSession:
    """Tests for classification and terminal transitions"""

    @pytest.mark.asyncio
    async def test_no_face_timeout_after_ten_ticks(self, make_session):
        session = await active_session(make_session)
        session.sampler.stop()

        for _ in range(9):
            session.handle_detection(detection(faces=0))
        assert session.phase is SessionPhase.ACTIVE
        assert session.snapshot().seconds_until_no_face_timeout == pytest.approx(0.01)

        session.handle_detection(detection(faces=0))

        assert session.phase is SessionPhase.TERMINATED
        assert session.state.termination_reason is ReasonCode.NO_FACE_TIMEOUT

    @pytest.mark.asyncio
    async def test_face_resets_grace(self, make_session):
        session = await active_session(make_session)
        session.sampler.stop()

        for faces in [0] * 9 + [1] + [0] * 9:
            session.handle_detection(detection(faces=faces))

        assert session.phase is SessionPhase.ACTIVE
        assert session.state.consecutive_no_face_ticks == 9
        session.close()

    @pytest.mark.asyncio
    async def test_multiple_persons_preempts_no_face(self, make_session):
        session = await active_session(make_session)
        session.sampler.stop()

        for _ in range(5):
            session.handle_detection(detection(faces=0))
        session.handle_detection(detection(faces=0, persons=2))

        assert session.state.termination_reason is ReasonCode.MULTIPLE_PERSONS

    @pytest.mark.asyncio
    async def test_terminal_entry_releases_everything(self, make_session, camera):
        session = await active_session(make_session)
        stream = session.stream

        session.handle_violation(ViolationEvent(ReasonCode.MULTIPLE_FACES))

        assert session.phase is SessionPhase.TERMINATED
        assert not session.sampler.is_running
        assert not session.focus_monitor.is_attached
        assert stream in camera.released
        assert session.stream is None

    @pytest.mark.asyncio
    async def test_terminal_state_is_final(self, make_session, reporter):
        """Events after the end change nothing and report nothing"""
        session = await active_session(make_session)
        session.handle_violation(ViolationEvent(ReasonCode.PHONE_DETECTED))
        result = session.result

        assert not session.handle_violation(ViolationEvent(ReasonCode.TAB_SWITCH))
        session.handle_detection(detection(faces=3))
        session.handle_focus_event("hidden")
        session.tick_countdown()
        with pytest.raises(SessionStateError):
            session.submit()

        assert session.state.termination_reason is ReasonCode.PHONE_DETECTED
        assert session.result is result
        await reporter.drain()

    @pytest.mark.asyncio
    async def test_late_inference_after_stop(self, make_session, object_oracle):
        """An inference still running at termination is discarded"""
        oracle = GatedFaceOracle()
        session = await active_session(
            make_session, adapter=PerceptionOracleAdapter(oracle, object_oracle)
        )
        await asyncio.wait_for(oracle.started.wait(), 1.0)

        session.submit(GradingPayload(score=90, correct_answers=9, total_questions=10))
        object_oracle.objects = [{"class": "cell phone", "score": 0.99}]
        oracle.gate.set()
        await asyncio.sleep(0.05)

        assert session.phase is SessionPhase.COMPLETED
        assert session.result.score == 90

    @pytest.mark.asyncio
    async def test_start_during_preview_inference_never_overlaps(self, make_session, object_oracle):
        """The exam sampler waits for a preview inference still running in the oracle"""
        oracle = SlowFaceOracle(delay=0.2)
        session = await ready_session(
            make_session, adapter=PerceptionOracleAdapter(oracle, object_oracle)
        )
        assert await asyncio.to_thread(oracle.started.wait, 1.0)

        await session.start()
        await asyncio.sleep(0.5)

        assert session.phase is SessionPhase.ACTIVE
        assert oracle.calls >= 2
        assert oracle.max_active == 1
        assert session.sampler.skipped_ticks > 0

        session.submit()
        await asyncio.sleep(oracle.delay + 0.1)

    @pytest.mark.asyncio
    async def test_stalled_remote_camera_times_out(self, make_session):
        """A browser that stops sending frames is treated as an absent face"""
        camera = RemoteCaptureDevice(max_frame_age=0.05)
        session = await active_session(make_session, camera=camera)

        assert camera.push_frame(blank_frame())
        result = await session.wait_finished(timeout=3.0)

        assert session.phase is SessionPhase.TERMINATED
        assert session.state.termination_reason is ReasonCode.NO_FACE_TIMEOUT
        assert result.outcome is Outcome.TERMINATED

    @pytest.mark.asyncio
    async def test_observers(self, make_session):
        session = make_session()
        seen = []
        unsubscribe = session.subscribe(lambda snapshot: seen.append(snapshot.phase))

        session.begin_setup()
        await session.prepare()
        unsubscribe()
        session.cancel()

        assert seen[0] is SessionPhase.SETUP
        assert SessionPhase.IDLE not in seen

    @pytest.mark.asyncio
    async def test_listener_errors_are_contained(self, make_session):
        session = make_session()

        def broken(snapshot):
            raise ValueError("listener bug")

        session.subscribe(broken)
        session.begin_setup()

        assert session.phase is SessionPhase.SETUP


class TestExamScenarios:
    """End-to-end exam flows with real sampling and countdown tasks"""

    @pytest.mark.asyncio
    async def test_timer_completes_with_score(self, make_session, camera):
        """Time runs out with a face visible: completed, score kept, not a violation"""
        session = await active_session(
            make_session,
            assessment=AssessmentInfo(title="Quiz", duration_seconds=60, badge="Quick Thinker"),
            grader=lambda: GradingPayload(score=85, correct_answers=17, total_questions=20)
        )

        result = await session.wait_finished(timeout=5.0)

        assert session.phase is SessionPhase.COMPLETED
        assert session.state.termination_reason is None
        assert result.outcome is Outcome.PASS
        assert result.score == 85
        assert result.badge == "Quick Thinker"
        assert result.elapsed_seconds == 60
        assert session.state.remaining_seconds == 0
        assert camera.acquired[-1].closed

    @pytest.mark.asyncio
    async def test_phone_terminates_with_zero_score(self, make_session, object_oracle):
        session = await active_session(make_session)
        session.record_grading(GradingPayload(score=95, correct_answers=19, total_questions=20))

        object_oracle.objects = [
            {"class": "person", "score": 0.95},
            {"class": "cell phone", "score": 0.8},
        ]
        result = await session.wait_finished(timeout=2.0)

        assert session.phase is SessionPhase.TERMINATED
        assert result.reason is ReasonCode.PHONE_DETECTED
        assert result.outcome is Outcome.TERMINATED
        assert result.score == 0
        assert result.badge is None
        assert result.to_payload()["terminationReason"] == "phone"

    @pytest.mark.asyncio
    async def test_hidden_terminates_immediately(self, make_session):
        """Tab switch has zero grace: terminated in the same call"""
        session = await active_session(make_session)

        event = session.handle_focus_event("hidden")

        assert event.reason is ReasonCode.TAB_SWITCH
        assert session.phase is SessionPhase.TERMINATED
        assert session.result.status == "terminated"
        assert session.result.to_payload()["terminationReason"] == "tab"

    @pytest.mark.asyncio
    async def test_explicit_submit_below_pass_mark(self, make_session):
        session = await active_session(make_session)

        result = session.submit(GradingPayload(score=40, correct_answers=4, total_questions=10))

        assert result.outcome is Outcome.FAIL
        assert result.badge is None
        assert result.status == "completed"
