from __future__ import annotations

from formcoach.coach.rule_store import DEFAULT_RULE_SPEC, RuleStore
from formcoach.coach.session import CoachSession
from formcoach.core.config import DEFAULT_RULES_DIR, CoachConfig
from formcoach.vision.synthetic import SquatScript, pose_at, squat_frames

from conftest import body


def _back_squat():
    return RuleStore(DEFAULT_RULES_DIR).get("back_squat")


def test_waiting_for_body_until_keypoints_are_complete(clock):
    session = CoachSession(DEFAULT_RULE_SPEC, clock=clock)
    effects = session.on_frame([])
    assert effects.status == "waiting_for_body"
    assert effects.status_text == "Waiting for full body in frame..."
    assert effects.metrics is None
    assert effects.rep_count == 0


def test_calibration_progress_is_reported():
    session = CoachSession(DEFAULT_RULE_SPEC)
    effects = None
    for i in range(39):
        effects = session.on_frame(body(300.0), now_ms=i * 100.0)
    assert effects.status == "calibrating"
    assert effects.status_text == "Calibrating... stand still (39/40)"
    effects = session.on_frame(body(300.0), now_ms=3900.0)
    assert effects.status != "calibrating"
    assert effects.calibration.baseline == 300.0
    assert effects.metrics is not None


def test_synthetic_squats_count_one_rep_per_cycle():
    session = CoachSession(_back_squat())
    counts = []
    events = []
    session.add_rep_listener(events.append)
    for t, keypoints in squat_frames(SquatScript(cycles=3)):
        counts.append(session.on_frame(keypoints, now_ms=t).rep_count)
    assert session.rep_count == 3
    assert counts == sorted(counts)
    assert [e.count for e in events] == [1, 2, 3]


def test_jittered_squats_still_count():
    session = CoachSession(_back_squat())
    for t, keypoints in squat_frames(SquatScript(cycles=4, jitter_px=1.0, seed=11)):
        session.on_frame(keypoints, now_ms=t)
    assert session.rep_count == 4


def test_shallow_squats_do_not_count():
    session = CoachSession(_back_squat())
    for t, keypoints in squat_frames(SquatScript(cycles=3, depth=0.2)):
        session.on_frame(keypoints, now_ms=t)
    assert session.rep_count == 0


def test_low_confidence_frames_are_flagged():
    session = CoachSession(_back_squat())
    for t, keypoints in squat_frames(SquatScript(cycles=2, score=0.45)):
        effects = session.on_frame(keypoints, now_ms=t)
    assert effects.status == "low_confidence"
    assert [i.rule_id for i in effects.issues] == ["confidence"]
    assert session.rep_count == 0


def test_standing_still_asks_for_depth_after_patience():
    session = CoachSession(_back_squat())
    script = SquatScript()
    requests = []
    for i in range(60):
        effects = session.on_frame(pose_at(script, 0.0), now_ms=i * 150.0)
        if effects.speech is not None:
            requests.append((i, effects.speech))
    assert effects.status == "form_issue"
    assert effects.status_text.startswith("Form tip: ")
    # calibrated and first evaluated on frame 39 (5850 ms), spoken after 1500 ms patience
    assert [(i, r.issue_id) for i, r in requests] == [(49, "depth")]


def test_leaning_torso_outranks_depth():
    session = CoachSession(_back_squat())
    script = SquatScript(torso_lean_deg=40.0)
    for i in range(45):
        effects = session.on_frame(pose_at(script, 0.0), now_ms=i * 150.0)
    assert effects.top_issue.rule_id == "torso_angle"
    assert effects.status_text == "Form tip: Keep your chest up, you are leaning too far forward."


def test_listener_errors_do_not_break_the_session():
    session = CoachSession(_back_squat())
    seen = []

    def broken(event):
        raise RuntimeError("display gone")

    session.add_rep_listener(broken)
    session.add_rep_listener(seen.append)
    for t, keypoints in squat_frames(SquatScript(cycles=1)):
        session.on_frame(keypoints, now_ms=t)
    assert [e.count for e in seen] == [1]


def test_snapshot_is_side_effect_free():
    session = CoachSession(_back_squat())
    for t, keypoints in squat_frames(SquatScript(cycles=1)):
        session.on_frame(keypoints, now_ms=t)
    first = session.snapshot()
    second = session.snapshot()
    assert first == second
    assert first["rep_count"] == 1
    assert first["exercise_id"] == "back_squat"
    assert first["frames_seen"] == 65


def test_calibration_keeps_samples_across_interruptions_by_default():
    session = CoachSession(DEFAULT_RULE_SPEC)
    for i in range(20):
        session.on_frame(body(300.0), now_ms=i * 100.0)
    session.on_frame([], now_ms=2000.0)
    assert session.state.calibrator.collected == 20


def test_calibration_restarts_after_interruption_when_configured():
    session = CoachSession(DEFAULT_RULE_SPEC, CoachConfig(reset_calibration_on_interrupt=True))
    for i in range(20):
        session.on_frame(body(300.0), now_ms=i * 100.0)
    session.on_frame([], now_ms=2000.0)
    assert session.state.calibrator.collected == 0
    effects = session.on_frame(body(300.0), now_ms=2100.0)
    assert effects.status_text == "Calibrating... stand still (1/40)"


def test_reset_clears_reps_and_calibration():
    session = CoachSession(_back_squat())
    for t, keypoints in squat_frames(SquatScript(cycles=1)):
        session.on_frame(keypoints, now_ms=t)
    session.reset()
    assert session.rep_count == 0
    assert not session.calibrated
    assert session.snapshot()["status"] == "waiting_for_body"


def test_low_confidence_frames_never_complete_a_rep():
    session = CoachSession(_back_squat())
    t = 0.0
    for _ in range(40):
        session.on_frame(body(300.0), now_ms=t)
        t += 100.0
    for _ in range(8):
        session.on_frame(body(350.0), now_ms=t)
        t += 100.0
    assert session.state.reps.phase == "down"

    for _ in range(6):
        effects = session.on_frame(body(300.0, score=0.45), now_ms=t)
        t += 100.0
        assert effects.status == "low_confidence"
        assert effects.rep_event is None
    assert session.rep_count == 0

    effects = session.on_frame(body(300.0), now_ms=t)
    assert effects.rep_event is not None
    assert effects.rep_event.count == 1
