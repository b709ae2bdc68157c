from __future__ import annotations

import json

import pytest

from booklens.analysis import (
    PLOT_SUMMARY_UNAVAILABLE,
    STRUCTURE_UNDETERMINED,
    SynthesisError,
    Synthesizer,
    normalize_name,
    sample_evenly,
    select_key_quotes,
)
from booklens.analysis import synthesizer as synthesizer_module
from booklens.analysis.synthesizer import PLOT_SUMMARY_NO_EVENTS
from booklens.llm import GatewayError
from booklens.schema import BookInfo, KeyQuote

from conftest import ScriptedGateway, make_chunk

STRUCTURE_REPLY = json.dumps(
    {
        "type": "linear",
        "arc": "A classic rise and fall.",
        "segments": [{"name": "Exposition", "description": "Setup", "approximate_location": "Beginning"}],
    }
)


def _book() -> list:
    return [
        make_chunk(
            0,
            page=1,
            analysis={
                "characters": [{"name": "Jane Doe", "description": "A clerk", "role": "protagonist"}],
                "events": [{"description": "Jane finds the ledger", "importance": "A major discovery"}],
                "themes": [{"name": "Greed", "description": "Money corrupts"}],
                "style": {"tone": "Tense", "narrativeVoice": "third person", "literaryDevices": ["foreshadowing"]},
                "plotDevelopment": "The mystery opens.",
                "settings": [{"location": "The Bank", "description": "Marble halls"}],
            },
        ),
        make_chunk(
            1,
            page=4,
            analysis={
                "characters": [
                    {"name": "jane, doe", "description": "Now suspicious", "role": "investigator"},
                    {"name": "Mr. Grey", "description": "The manager"},
                ],
                "events": [{"description": "Grey lies to Jane", "importance": "minor"}],
                "themes": [{"name": "greed", "description": "Money corrupts"}],
                "style": {"tone": "tense ", "narrativeVoice": "Third person", "literaryDevices": ["Foreshadowing", "irony"]},
                "keyQuotes": [{"quote": "Count it twice.", "explanation": "Grey's motto"}],
                "plotDevelopment": "Suspicion grows.",
                "settings": [{"location": "the bank!"}],
            },
        ),
    ]


def test_merges_entities_by_normalized_name() -> None:
    gateway = ScriptedGateway(["Jane uncovers a fraud.", STRUCTURE_REPLY])

    analysis = Synthesizer(gateway).synthesize(_book(), BookInfo(id="ledger", title="The Ledger"))

    assert analysis.title == "The Ledger"
    jane = analysis.characters[0]
    assert jane.name == "Jane Doe"
    assert jane.appearances == 2
    assert jane.pages == [1, 4]
    assert jane.description == "A clerk. Now suspicious"
    assert jane.role == "protagonist; investigator"
    assert [theme.occurrences for theme in analysis.themes] == [2]
    assert analysis.themes[0].description == "Money corrupts"
    assert [(s.location, s.occurrences) for s in analysis.settings] == [("The Bank", 2)]


def test_timeline_summary_style_quotes_and_structure() -> None:
    gateway = ScriptedGateway(["  Jane uncovers a fraud.  ", STRUCTURE_REPLY])

    analysis = Synthesizer(gateway).synthesize(_book())

    assert [event.description for event in analysis.timeline] == ["Jane finds the ledger", "Grey lies to Jane"]
    assert [event.page for event in analysis.timeline] == [1, 4]
    assert analysis.plot_summary == "Jane uncovers a fraud."
    assert "Jane finds the ledger (Page 1)" in gateway.prompts[0]
    assert "Suspicion grows. (Pages 4-4)" in gateway.prompts[1]
    assert analysis.style.tone == "tense"
    assert analysis.style.voice == "third person"
    assert analysis.style.literary_devices[0] == "foreshadowing"
    assert [quote.quote for quote in analysis.key_quotes] == ["Count it twice."]
    assert analysis.key_quotes[0].page == 4
    assert analysis.structure.type == "linear"
    assert analysis.structure.segments[0].approximate_location == "Beginning"


def test_synthesis_is_idempotent() -> None:
    gateway = ScriptedGateway(default=STRUCTURE_REPLY)
    synthesizer = Synthesizer(gateway)

    first = synthesizer.synthesize(_book())
    second = synthesizer.synthesize(list(reversed(_book())))

    assert first == second


def test_main_and_supporting_characters() -> None:
    names = ["Ann", "Ben", "Cal", "Dee", "Eve"]
    chunks = [
        make_chunk(index, analysis={"characters": [{"name": name} for name in names[: index + 1]]})
        for index in range(len(names))
    ]

    analysis = Synthesizer(ScriptedGateway()).synthesize(chunks)

    assert [c.name for c in analysis.characters] == names
    assert [c.appearances for c in analysis.characters] == [5, 4, 3, 2, 1]
    assert [c.name for c in analysis.main_characters] == ["Ann", "Ben", "Cal"]
    assert [c.name for c in analysis.supporting_characters] == ["Dee", "Eve"]


def test_major_events_backfill_when_few_are_marked() -> None:
    chunks = [
        make_chunk(index, analysis={"events": [{"description": f"Event {index}", "importance": "routine"}]})
        for index in range(9)
    ]

    analysis = Synthesizer(ScriptedGateway()).synthesize(chunks)

    assert [event.description for event in analysis.major_events] == [
        "Event 0",
        "Event 2",
        "Event 4",
        "Event 6",
        "Event 8",
    ]


def test_marked_major_events_are_kept_in_order() -> None:
    importance = ["crucial", "minor", "Significant turn", "major", "important", "major", "minor"]
    chunks = [
        make_chunk(index, analysis={"events": [{"description": f"Event {index}", "importance": label}]})
        for index, label in enumerate(importance)
    ]

    analysis = Synthesizer(ScriptedGateway()).synthesize(chunks)

    assert [event.position for event in analysis.major_events] == [0, 2, 3, 4, 5]


def test_chunks_without_analysis_yield_empty_aggregates() -> None:
    gateway = ScriptedGateway()

    analysis = Synthesizer(gateway).synthesize([make_chunk(0), make_chunk(1)])

    assert analysis.characters == []
    assert analysis.themes == []
    assert analysis.timeline == []
    assert analysis.major_events == []
    assert analysis.key_quotes == []
    assert analysis.plot_summary == PLOT_SUMMARY_NO_EVENTS
    assert analysis.structure.type == STRUCTURE_UNDETERMINED
    assert gateway.prompts == []


def test_gateway_failures_degrade_to_placeholders() -> None:
    gateway = ScriptedGateway([GatewayError("offline"), GatewayError("offline")])

    analysis = Synthesizer(gateway).synthesize(_book())

    assert analysis.plot_summary == PLOT_SUMMARY_UNAVAILABLE
    assert analysis.structure.type == STRUCTURE_UNDETERMINED
    assert analysis.characters


def test_unparseable_structure_keeps_raw_arc() -> None:
    gateway = ScriptedGateway(["Summary.", "It is mostly linear, I think."])

    analysis = Synthesizer(gateway).synthesize(_book())

    assert analysis.structure.type == STRUCTURE_UNDETERMINED
    assert analysis.structure.arc == "It is mostly linear, I think."


def test_structure_without_type_is_undetermined() -> None:
    gateway = ScriptedGateway(["Summary.", '{"arc": "Rising action"}'])

    analysis = Synthesizer(gateway).synthesize(_book())

    assert analysis.structure.type == STRUCTURE_UNDETERMINED
    assert analysis.structure.arc == "Rising action"


def test_aggregation_error_carries_partial_analysis(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(quotes):
        raise KeyError("quote index")

    monkeypatch.setattr(synthesizer_module, "select_key_quotes", broken)
    gateway = ScriptedGateway(["Jane uncovers a fraud.", STRUCTURE_REPLY])

    with pytest.raises(SynthesisError) as excinfo:
        Synthesizer(gateway).synthesize(_book())

    partial = excinfo.value.partial
    assert partial is not None
    assert partial.characters[0].name == "Jane Doe"
    assert len(partial.timeline) == 2
    assert partial.plot_summary == "Jane uncovers a fraud."
    assert partial.style.tone == "tense"
    assert partial.key_quotes == []
    assert partial.structure.type is None
    assert len(gateway.prompts) == 1


def test_any_model_step_error_degrades_to_placeholders() -> None:
    def reset(prompt: str) -> str:
        raise ConnectionResetError("reset")

    gateway = ScriptedGateway([reset, reset])

    analysis = Synthesizer(gateway).synthesize(_book())

    assert analysis.plot_summary == PLOT_SUMMARY_UNAVAILABLE
    assert analysis.style.tone == "tense"
    assert [quote.quote for quote in analysis.key_quotes] == ["Count it twice."]
    assert analysis.structure.type == STRUCTURE_UNDETERMINED
    assert len(gateway.prompts) == 2


def test_key_quotes_are_kept_when_few() -> None:
    quotes = [KeyQuote(quote=f"Q{index}", page=index) for index in range(10)]

    assert select_key_quotes(quotes) == quotes


def test_key_quotes_are_spread_across_the_book() -> None:
    quotes = [KeyQuote(quote=f"Q{index}", page=index + 1, position=index) for index in range(30)]

    selected = select_key_quotes(list(reversed(quotes)))

    assert len(selected) == 10
    pages = [quote.page for quote in selected]
    assert pages == sorted(pages)
    sections = {(page - 1) // 6 for page in pages}
    assert len(sections) >= 3


def test_key_quotes_without_pages_sort_last() -> None:
    quotes = [KeyQuote(quote=f"Q{index}", page=None if index < 3 else index, position=index) for index in range(12)]

    selected = select_key_quotes(quotes)

    assert selected[0].page == 3
    assert selected[-1].page is None


def test_normalize_name() -> None:
    assert normalize_name("  Jane,   Doe! ") == "jane doe"
    assert normalize_name("Mr._Grey") == "mrgrey"
    assert normalize_name("???") == ""


def test_sample_evenly_keeps_ends() -> None:
    items = list(range(100))

    sampled = sample_evenly(items, 10)

    assert len(sampled) == 10
    assert sampled[0] == 0
    assert sampled[-1] == 99
    assert sample_evenly(items[:5], 10) == items[:5]
