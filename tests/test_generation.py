import asyncio

import pytest

from adcopy_planner.conversation import ConversationSession, SeedArtifact
from adcopy_planner.exceptions import InvalidInputError
from adcopy_planner.generation import (
    BatchStreamState,
    build_batches,
    generate_single_shot,
    merge_batches,
    provider_stream_factory,
    record_run,
    regenerate,
    run_generation,
    stream_batch,
    stream_plan_ideas,
)
from adcopy_planner.parsing import PlanIdea, ScriptVariation
from adcopy_planner.storage import HistoryStore
from adcopy_planner.streaming import StreamEvent, decode_events, encode_event

from conftest import FakeTextProvider, copy_blocks, event_source, script_blocks, text_events

SEED = SeedArtifact(kind="script", text="Hello, buy now!")


def _ready_session():
    session = ConversationSession().with_seed(SEED)
    for direction in ("funnier", "target students", "stress the discount"):
        session = session.with_turn("user", direction).with_turn("assistant", "Got it.")
    assert session.can_generate
    return session


def _scripted_factory(delays=None, blocks=script_blocks, overrides=None):
    """Each batch streams its two numbered blocks; ``overrides`` replaces a batch's events."""
    delays = delays or {}
    overrides = overrides or {}
    calls = []

    def factory(session, batch):
        calls.append((session, batch))
        if batch.batch_index in overrides:
            events = overrides[batch.batch_index]
        else:
            events = text_events(blocks(batch.first_variation_number), batch=batch.batch_index)
        return event_source(*events, delay=delays.get(batch.batch_index, 0.0))

    factory.calls = calls
    return factory


def _bodies(result):
    return [v.body.splitlines()[0] for v in result.variations]


def test_build_batches_uses_distinct_style_pairs():
    batches = build_batches()
    assert [b.batch_index for b in batches] == [0, 1, 2]
    assert [b.first_variation_number for b in batches] == [1, 3, 5]
    assert len({b.styles for b in batches}) == 3


def test_full_run_returns_six_variations_in_order():
    factory = _scripted_factory()
    result = asyncio.run(run_generation(_ready_session(), factory))

    assert len(result.variations) == 6
    assert _bodies(result) == [f"Hello again, this is script number {n}." for n in range(1, 7)]
    assert result.errors == {}
    assert all(b.is_complete for b in result.batches)
    assert len(factory.calls) == 3


def test_merge_order_is_batch_order_not_completion_order():
    expected = [f"Hello again, this is script number {n}." for n in range(1, 7)]
    for delays in ({0: 0.03, 1: 0.0, 2: 0.015}, {0: 0.0, 1: 0.02, 2: 0.0}, {2: 0.0, 1: 0.01, 0: 0.02}):
        result = asyncio.run(run_generation(_ready_session(), _scripted_factory(delays=delays)))
        assert _bodies(result) == expected


def test_failed_batch_is_excluded_and_reported():
    overrides = {
        1: [
            StreamEvent(text="---\n[Variation 3]\nHalf a script that will never", batch=1),
            StreamEvent(error="upstream exploded", batch=1),
        ]
    }
    result = asyncio.run(run_generation(_ready_session(), _scripted_factory(overrides=overrides)))

    assert len(result.variations) == 4
    assert _bodies(result) == [
        "Hello again, this is script number 1.",
        "Hello again, this is script number 2.",
        "Hello again, this is script number 5.",
        "Hello again, this is script number 6.",
    ]
    assert result.errors == {1: "upstream exploded"}
    assert result.failed_batches == [1]
    assert result.to_dict()["batches"][1] == {"batch_index": 1, "complete": False, "error": "upstream exploded", "count": 0}


def test_factory_error_only_fails_its_batch():
    inner = _scripted_factory()

    def factory(session, batch):
        if batch.batch_index == 0:
            raise InvalidInputError("no seed artifact")
        return inner(session, batch)

    result = asyncio.run(run_generation(_ready_session(), factory))
    assert result.errors == {0: "no seed artifact"}
    assert len(result.variations) == 4


def test_batch_stream_is_closed_after_error_event():
    closed = []

    async def erroring():
        try:
            yield encode_event(StreamEvent(error="upstream exploded", batch=0))
            yield encode_event(StreamEvent(text="never read", batch=0))
        finally:
            closed.append(True)

    inner = _scripted_factory()

    def factory(session, batch):
        return erroring() if batch.batch_index == 0 else inner(session, batch)

    async def scenario():
        result = await run_generation(_ready_session(), factory)
        # Checked before the loop shuts down and finalizes leftover generators.
        return result, list(closed)

    result, closed_during_run = asyncio.run(scenario())
    assert closed_during_run == [True]
    assert result.errors == {0: "upstream exploded"}
    assert len(result.variations) == 4


def test_stream_without_done_counts_as_complete():
    events = text_events(script_blocks(1), batch=0)[:-1]
    result = asyncio.run(run_generation(_ready_session(), _scripted_factory(overrides={0: events})))
    assert result.batches[0].is_complete
    assert len(result.variations) == 6


def test_not_ready_session_does_nothing():
    factory = _scripted_factory()
    session = ConversationSession().with_seed(SEED).with_turn("user", "funnier")
    assert asyncio.run(run_generation(session, factory)) is None
    assert asyncio.run(run_generation(ConversationSession(), factory)) is None
    assert factory.calls == []


def test_unknown_grammar_is_rejected():
    with pytest.raises(InvalidInputError):
        asyncio.run(run_generation(_ready_session(), _scripted_factory(), grammar="haiku"))


def test_copy_grammar_parses_copy_blocks():
    factory = _scripted_factory(blocks=copy_blocks)
    result = asyncio.run(run_generation(_ready_session(), factory, grammar="copy"))
    assert [v.main_text for v in result.variations] == [f"Headline {n}" for n in range(1, 7)]


def test_batch_timeout_fails_only_the_slow_batch():
    async def hanging():
        await asyncio.sleep(10)
        yield b""

    inner = _scripted_factory()

    def factory(session, batch):
        return hanging() if batch.batch_index == 2 else inner(session, batch)

    result = asyncio.run(run_generation(_ready_session(), factory, batch_timeout=0.05))
    assert list(result.errors) == [2]
    assert "timed out" in result.errors[2]
    assert len(result.variations) == 4


def test_cancel_event_stops_running_batches_and_keeps_finished_ones():
    async def hanging():
        await asyncio.sleep(10)
        yield b""

    inner = _scripted_factory()

    def factory(session, batch):
        return hanging() if batch.batch_index == 1 else inner(session, batch)

    async def scenario():
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)
        return await run_generation(_ready_session(), factory, cancel_event=cancel)

    result = asyncio.run(scenario())
    assert result.errors == {1: "cancelled"}
    assert len(result.variations) == 4


def test_on_update_previews_grow_until_final():
    seen = {}

    def on_update(state):
        seen.setdefault(state.batch_index, []).append(len(state.variations))

    asyncio.run(run_generation(_ready_session(), _scripted_factory(), on_update=on_update))
    assert sorted(seen) == [0, 1, 2]
    for counts in seen.values():
        assert counts == sorted(counts)
        assert counts[-1] == 2


def test_merge_batches_skips_errors_and_sorts():
    a = BatchStreamState(batch_index=1, variations=[ScriptVariation("b1", "")])
    b = BatchStreamState(batch_index=0, variations=[ScriptVariation("b0", "")])
    c = BatchStreamState(batch_index=2, variations=[ScriptVariation("b2", "")], error="boom")
    assert [v.body for v in merge_batches([a, c, b])] == ["b0", "b1"]


def test_regenerate_adds_feedback_as_user_turn():
    factory = _scripted_factory()
    session = _ready_session()
    updated, result = asyncio.run(regenerate(session, factory, feedback="  shorter please "))

    assert updated.turns[-1].text == "shorter please"
    assert updated.turns[-1].role == "user"
    assert len(result.variations) == 6
    assert all(call[0] is updated for call in factory.calls)

    same, _ = asyncio.run(regenerate(session, _scripted_factory()))
    assert same is session


def test_record_run_writes_history_only_with_variations(tmp_path):
    history = HistoryStore(root_dir=tmp_path)
    session = _ready_session()
    result = asyncio.run(run_generation(session, _scripted_factory()))

    entry = record_run(history, session, result)
    assert history.list() == [entry]
    assert entry.seed_summary == "Hello, buy now!"
    assert len(entry.variations) == 6
    assert entry.conversation[1] == {"role": "user", "text": "funnier", "options": ()}

    all_failed = {i: [StreamEvent(error="nope", batch=i)] for i in range(3)}
    empty = asyncio.run(run_generation(session, _scripted_factory(overrides=all_failed)))
    assert record_run(history, session, empty) is None
    assert len(history.list()) == 1


def test_provider_factory_streams_numbered_prompts(fake_text_provider):
    factory = provider_stream_factory(fake_text_provider)
    result = asyncio.run(run_generation(_ready_session(), factory))

    assert _bodies(result) == [f"Hello again, this is script number {n}." for n in range(1, 7)]
    prompts_sent = [c["messages"][-1]["content"] for c in fake_text_provider.calls]
    assert sum("- Variation 3:" in p for p in prompts_sent) == 1
    assert all(c["system"] and "Hello, buy now!" in c["system"] for c in fake_text_provider.calls)


def test_stream_batch_reports_provider_failure_as_error_event():
    provider = FakeTextProvider(fail=True)

    async def collect():
        stream = stream_batch(SEED, _ready_session().turns, ("a", "b"), 0, provider)
        return [e async for e in decode_events(stream)]

    events = asyncio.run(collect())
    assert len(events) == 1
    assert events[0].batch == 0
    assert "boom" in events[0].error


def test_single_shot_image_and_video():
    provider = FakeTextProvider(
        replies=[
            "1. Summer: Bright banner\n2. Winter: Cozy mood\n",
            "Scene 1: Opening shot of the beach\nNarration: Summer is here\n---\nScene 1: Snowy street at night\n",
        ]
    )
    ideas = asyncio.run(generate_single_shot("Big sale", "image", provider))
    assert ideas == [PlanIdea("Summer", "Bright banner"), PlanIdea("Winter", "Cozy mood")]

    scripts = asyncio.run(generate_single_shot("Big sale", "video", provider))
    assert [s.title for s in scripts] == ["Summer is here", "Snowy street at night"]

    with pytest.raises(InvalidInputError):
        asyncio.run(generate_single_shot("  ", "image", provider))


def test_stream_plan_ideas_frames_deltas():
    provider = FakeTextProvider(stream_text="1. Idea: Something good\n")

    async def collect():
        return [e async for e in decode_events(stream_plan_ideas("image", provider, advertiser_name="Acme"))]

    events = asyncio.run(collect())
    assert "".join(e.text or "" for e in events) == "1. Idea: Something good\n"
    assert events[-1].done
    assert "Acme" in provider.calls[0]["messages"][0]["content"]
