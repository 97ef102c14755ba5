from vidchat.chat.turn_guard import TurnGuard


def test_key_prefers_conversation_id():
    assert TurnGuard.key_for("c1", "u1", "v1") == "conversation:c1"
    assert TurnGuard.key_for(None, "u1", "v1") == "u1:v1"
    assert TurnGuard.key_for(None, None, "v1") == "anonymous:v1"


def test_second_turn_for_same_key_is_refused_until_released(fake_clock):
    guard = TurnGuard(clock=fake_clock)

    assert guard.try_begin("conversation:c1")
    assert not guard.try_begin("conversation:c1")
    assert guard.try_begin("conversation:c2")
    assert len(guard) == 2

    guard.end("conversation:c1")
    assert not guard.is_active("conversation:c1")
    assert guard.try_begin("conversation:c1")


def test_abandoned_turn_expires_after_max_duration(fake_clock):
    guard = TurnGuard(max_turn_seconds=300, clock=fake_clock)
    assert guard.try_begin("conversation:c1")

    fake_clock.advance(299)
    assert not guard.try_begin("conversation:c1")

    fake_clock.advance(1)
    assert not guard.is_active("conversation:c1")
    assert guard.try_begin("conversation:c1")
    assert guard.is_active("conversation:c1")
