from __future__ import annotations

import asyncio
import base64

import numpy as np
import pytest

from bridge.session import BridgePair
from bridge.state import BridgeConfig, BridgeState, ResponseTrigger
from telephony.frames import AudioEncoding

# A long keepalive interval keeps synthetic silence out of the scenarios that count media.
CONFIG = BridgeConfig(
    commit_threshold=10,
    keepalive_interval=3600,
    close_grace_seconds=0.5,
    greeting_instructions="Greet the caller.",
)


async def _open_pair(fake_leg, wait_until, config: BridgeConfig = CONFIG):
    telephony, remote = fake_leg(), fake_leg()
    pair = BridgePair(telephony, remote, config)
    task = asyncio.create_task(pair.run())

    await wait_until(lambda: remote.sent_of_type("session.update"))
    remote.push({"type": "session.created", "session": {}})
    remote.push({"type": "session.updated", "session": {}})
    await wait_until(lambda: pair.remote_session.ready)
    return pair, telephony, remote, task


def test_session_update_is_sent_when_remote_opens(fake_leg, wait_until):
    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until)
        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)
        return remote

    remote = asyncio.run(scenario())
    assert remote.connected is True
    update = remote.sent[0]
    assert update["type"] == "session.update"
    assert update["session"]["input_audio_format"] == "g711_ulaw"
    assert update["session"]["turn_detection"] == {
        "type": "server_vad",
        "silence_duration_ms": 500,
        "create_response": True,
    }


def test_scenarios_commit_relay_and_stop(fake_leg, wait_until, messages):
    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until)

        # Scenario A: start, then K inbound frames.
        telephony.push(messages.start("SID1"))
        await wait_until(lambda: pair.state is BridgeState.STREAMING)
        assert pair.call.stream_sid == "SID1"
        assert pair.keepalive.running is True

        for _ in range(10):
            telephony.push(messages.media())
        await wait_until(lambda: len(remote.sent_of_type("input_audio_buffer.append")) == 10)
        await wait_until(lambda: remote.sent_of_type("response.create"))

        assert len(remote.sent_of_type("input_audio_buffer.commit")) == 1
        assert len(remote.sent_of_type("response.create")) == 1
        assert pair.call.greeted is True
        assert telephony.media() == []

        # Scenario B: three audio deltas are relayed, tagged with the stream identity.
        remote.push({"type": "response.created", "response": {"id": "resp_1"}})
        remote.push(messages.delta())
        remote.push(messages.delta(type_name="response.output_audio.delta"))
        remote.push(messages.delta())
        remote.push({"type": "response.done", "response": {"id": "resp_1"}})
        await wait_until(lambda: len(telephony.media()) == 3)
        await wait_until(lambda: pair.call.response_pending is False)

        assert [m["streamSid"] for m in telephony.media()] == ["SID1", "SID1", "SID1"]
        assert pair.call.real_audio_seen is True
        assert pair.keepalive.running is False

        # Scenario C: stop tears everything down.
        telephony.push(messages.stop("SID1"))
        await asyncio.wait_for(task, timeout=2)

        sent_before = len(remote.sent)
        telephony.push(messages.media())
        remote.push(messages.delta())
        await asyncio.sleep(0.02)
        return pair, telephony, remote, sent_before

    pair, telephony, remote, sent_before = asyncio.run(scenario())
    assert pair.state is BridgeState.CLOSED
    assert telephony.closed is True
    assert remote.closed is True
    assert pair.keepalive.running is False
    assert len(remote.sent) == sent_before
    assert len(telephony.media()) == 3
    assert pair.call.frames_in == 10
    assert pair.call.frames_out == 3
    assert pair.call.commits == 1


def test_no_media_reaches_telephony_before_start(fake_leg, wait_until, messages):
    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until)

        remote.push(messages.delta())
        remote.push(messages.delta())
        await wait_until(lambda: pair.call.frames_dropped == 2)
        assert telephony.media() == []
        assert pair.call.real_audio_seen is False

        telephony.push(messages.start("SID9"))
        remote.push(messages.delta())
        await wait_until(lambda: len(telephony.media()) == 1)

        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)
        return telephony

    telephony = asyncio.run(scenario())
    assert [m["streamSid"] for m in telephony.media()] == ["SID9"]


def test_inbound_media_before_start_or_readiness_is_dropped(fake_leg, wait_until, messages):
    async def scenario():
        telephony, remote = fake_leg(), fake_leg()
        pair = BridgePair(telephony, remote, CONFIG)
        task = asyncio.create_task(pair.run())
        await wait_until(lambda: remote.sent_of_type("session.update"))

        # Before start.
        telephony.push(messages.media())
        # After start, before the remote session is ready.
        telephony.push(messages.start("SID1"))
        telephony.push(messages.media())
        # Outbound-track echoes are never forwarded.
        telephony.push(messages.media(track="outbound"))
        await wait_until(lambda: pair.call.frames_dropped == 2)

        remote.push({"type": "session.updated", "session": {}})
        await wait_until(lambda: pair.remote_session.ready)
        telephony.push(messages.media())
        await wait_until(lambda: remote.sent_of_type("input_audio_buffer.append"))

        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)
        return pair, remote

    pair, remote = asyncio.run(scenario())
    assert len(remote.sent_of_type("input_audio_buffer.append")) == 1
    assert pair.call.frames_dropped == 2


def test_malformed_and_unknown_messages_do_not_end_the_call(fake_leg, wait_until, messages):
    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until)

        telephony.push("{not json")
        telephony.push({"event": "connected", "protocol": "Call", "version": "1.0.0"})
        telephony.push({"event": "mark", "streamSid": "SID1", "mark": {"name": "m"}})
        telephony.push({"event": "dtmf", "dtmf": {"digit": "5"}})
        remote.push("garbage")
        remote.push({"type": "rate_limits.updated", "rate_limits": []})
        remote.push({"type": "error", "error": {"message": "buffer too small"}})
        telephony.push(messages.start("SID1"))

        await wait_until(lambda: pair.state is BridgeState.STREAMING)
        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)
        return pair

    pair = asyncio.run(scenario())
    assert pair.state is BridgeState.CLOSED


def test_remote_close_closes_telephony(fake_leg, wait_until, messages):
    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until)
        telephony.push(messages.start("SID1"))
        await wait_until(lambda: pair.state is BridgeState.STREAMING)

        remote.hang_up()
        await asyncio.wait_for(task, timeout=2)
        return pair, telephony, remote

    pair, telephony, remote = asyncio.run(scenario())
    assert pair.state is BridgeState.CLOSED
    assert telephony.closed is True
    assert remote.closed is True
    assert pair.keepalive.running is False


def test_telephony_disconnect_closes_remote(fake_leg, wait_until):
    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until)
        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)
        return remote

    assert asyncio.run(scenario()).closed is True


def test_remote_connect_failure_closes_telephony(fake_leg, connect_failure):
    async def scenario():
        telephony = fake_leg()
        remote = fake_leg(connect_error=connect_failure)
        pair = BridgePair(telephony, remote, CONFIG)
        await asyncio.wait_for(pair.run(), timeout=2)
        return pair, telephony, remote

    pair, telephony, remote = asyncio.run(scenario())
    assert pair.state is BridgeState.CLOSED
    assert telephony.closed is True
    assert remote.sent == []


def test_keepalive_feeds_silence_until_first_audio(fake_leg, wait_until, messages):
    config = BridgeConfig(commit_threshold=10, keepalive_interval=0.005, close_grace_seconds=0.5)

    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until, config)
        telephony.push(messages.start("SID1"))
        await wait_until(lambda: pair.call.silence_frames >= 3)

        remote.push(messages.delta(b"\x10" * 160))
        await wait_until(lambda: pair.call.frames_out == 1)
        silence_after_latch = pair.call.silence_frames
        await asyncio.sleep(0.05)

        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)
        return pair, telephony, silence_after_latch

    pair, telephony, silence_after_latch = asyncio.run(scenario())
    assert pair.call.silence_frames == silence_after_latch
    assert all(m["streamSid"] == "SID1" for m in telephony.media())
    payloads = [base64.b64decode(m["media"]["payload"]) for m in telephony.media()]
    real = payloads.index(b"\x10" * 160)
    assert all(p == b"\xff" * 160 for p in payloads[:real])
    assert payloads[real + 1 :] == []


def test_pcm16_remote_audio_is_transcoded_both_ways(fake_leg, wait_until, messages):
    config = BridgeConfig(
        remote_encoding=AudioEncoding.PCM16,
        remote_sample_rate=16000,
        commit_threshold=10,
        keepalive_interval=3600,
        close_grace_seconds=0.5,
    )

    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until, config)
        telephony.push(messages.start("SID1"))
        telephony.push(messages.media())
        pcm = np.zeros(320, dtype="<i2").tobytes()
        remote.push(messages.delta(pcm))
        await wait_until(lambda: remote.sent_of_type("input_audio_buffer.append") and telephony.media())

        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)
        return remote, telephony

    remote, telephony = asyncio.run(scenario())
    assert remote.sent[0]["session"]["input_audio_format"] == "pcm16"
    appended = base64.b64decode(remote.sent_of_type("input_audio_buffer.append")[0]["audio"])
    assert len(appended) == 640
    relayed = base64.b64decode(telephony.media()[0]["media"]["payload"])
    assert relayed == b"\xff" * 160


def test_turn_end_policy_responds_after_speech_stops(fake_leg, wait_until, messages):
    config = BridgeConfig(
        commit_threshold=1,
        keepalive_interval=3600,
        close_grace_seconds=0.5,
        response_trigger=ResponseTrigger.TURN_END,
    )

    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until, config)
        telephony.push(messages.start("SID1"))
        telephony.push(messages.media())
        await wait_until(lambda: remote.sent_of_type("input_audio_buffer.commit"))
        assert remote.sent_of_type("response.create") == []

        remote.push({"type": "input_audio_buffer.speech_started"})
        remote.push({"type": "input_audio_buffer.speech_stopped"})
        remote.push({"type": "input_audio_buffer.speech_stopped"})
        await wait_until(lambda: remote.sent_of_type("response.create"))
        await asyncio.sleep(0.01)

        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)
        return remote

    remote = asyncio.run(scenario())
    assert remote.sent[0]["session"]["turn_detection"]["create_response"] is False
    assert len(remote.sent_of_type("response.create")) == 1


def test_session_ready_policy_greets_once_stream_starts(fake_leg, wait_until, messages):
    config = BridgeConfig(keepalive_interval=3600, close_grace_seconds=0.5, response_trigger=ResponseTrigger.SESSION_READY)

    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until, config)
        await asyncio.sleep(0.01)
        # Ready but no stream identity yet: the greeting would have nowhere to go.
        assert remote.sent_of_type("response.create") == []

        telephony.push(messages.start("SID1"))
        await wait_until(lambda: remote.sent_of_type("response.create"))
        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)
        return pair

    assert asyncio.run(scenario()).call.greeted is True


def test_run_only_once(fake_leg, wait_until):
    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until)
        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)
        with pytest.raises(RuntimeError):
            await pair.run()

    asyncio.run(scenario())


def test_empty_media_payloads_never_commit(fake_leg, wait_until, messages):
    config = BridgeConfig(commit_threshold=3, keepalive_interval=3600, close_grace_seconds=0.5)

    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until, config)
        telephony.push(messages.start("SID1"))
        for _ in range(3):
            telephony.push(messages.media(b""))
        telephony.push(messages.media())
        telephony.push(messages.media())
        await wait_until(lambda: len(remote.sent_of_type("input_audio_buffer.append")) == 2)
        assert remote.sent_of_type("input_audio_buffer.commit") == []

        telephony.push(messages.media())
        await wait_until(lambda: remote.sent_of_type("input_audio_buffer.commit"))
        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)
        return pair

    pair = asyncio.run(scenario())
    assert pair.call.frames_in == 3
    assert pair.call.commits == 1


def test_rejected_response_does_not_block_later_turns(fake_leg, wait_until, messages):
    config = BridgeConfig(
        commit_threshold=1,
        keepalive_interval=3600,
        close_grace_seconds=0.5,
        response_trigger=ResponseTrigger.TURN_END,
    )

    async def scenario():
        pair, telephony, remote, task = await _open_pair(fake_leg, wait_until, config)
        telephony.push(messages.start("SID1"))
        remote.push({"type": "input_audio_buffer.speech_stopped"})
        await wait_until(lambda: remote.sent_of_type("response.create"))
        rejected = remote.sent_of_type("response.create")[0]["event_id"]

        remote.push({"type": "error", "error": {"type": "invalid_request_error", "message": "no", "event_id": rejected}})
        await wait_until(lambda: not pair.call.response_pending)
        remote.push({"type": "input_audio_buffer.speech_stopped"})
        await wait_until(lambda: len(remote.sent_of_type("response.create")) == 2)

        telephony.hang_up()
        await asyncio.wait_for(task, timeout=2)

    asyncio.run(scenario())
