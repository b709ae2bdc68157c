from __future__ import annotations

from booklens.analysis import AnalysisProgress, AnalysisPromptBuilder, ChunkAnalyzer, attach_analyses
from booklens.llm import GatewayError

from conftest import ScriptedGateway, analysis_json, make_chunk


def test_prompt_names_every_category_and_pages() -> None:
    prompt = AnalysisPromptBuilder().build(make_chunk(0, page=7, text="Alice opened the door."))

    for header in ("CHARACTERS", "EVENTS", "THEMES", "STYLE", "KEY QUOTES", "PLOT DEVELOPMENT", "SETTINGS"):
        assert header in prompt
    assert "(Pages: 7-7)" in prompt
    assert "Alice opened the door." in prompt
    assert '"keyQuotes": [' in prompt


def test_prompt_marks_unknown_pages() -> None:
    prompt = AnalysisPromptBuilder().build(make_chunk(0, text="No pages here."))

    assert "(Pages: unknown-unknown)" in prompt


def test_analyze_parses_json_reply_and_tags_chunk() -> None:
    reply = analysis_json(
        characters=[{"name": "Alice", "description": "the heroine", "role": "protagonist"}],
        events=[{"description": "Alice opens the door", "importance": "major turning point"}],
        plotDevelopment="The journey begins.",
    )
    gateway = ScriptedGateway([reply])

    analysis = ChunkAnalyzer(gateway).analyze(make_chunk(3, page=2, text="Alice opened the door."))

    assert analysis.chunk_id == "chunk-3"
    assert analysis.characters[0].role == "protagonist"
    assert analysis.events[0].importance == "major turning point"
    assert analysis.plot_development == "The journey begins."
    assert analysis.raw_model_output == reply
    assert analysis.timestamp is not None
    assert len(gateway.prompts) == 1


def test_analyze_falls_back_to_heuristics_for_prose_reply() -> None:
    gateway = ScriptedGateway(["CHARACTERS:\n- Alice Smith walks in\n\nSETTINGS:\n- The old mill\n"])

    analysis = ChunkAnalyzer(gateway).analyze(make_chunk(0))

    assert [c.name for c in analysis.characters] == ["Alice Smith"]
    assert [s.location for s in analysis.settings] == ["The old mill"]


def test_analyze_all_continues_after_failures_and_reports_progress() -> None:
    gateway = ScriptedGateway(
        [
            analysis_json(plotDevelopment="first"),
            GatewayError("backend down"),
            analysis_json(plotDevelopment="third"),
        ]
    )
    chunks = [make_chunk(index) for index in range(3)]
    progress: list[AnalysisProgress] = []

    analyses = ChunkAnalyzer(gateway).analyze_all(chunks, on_progress=progress.append)

    assert [analysis.chunk_id for analysis in analyses] == ["chunk-0", "chunk-2"]
    assert [(p.current, p.total) for p in progress] == [(1, 3), (2, 3), (3, 3)]
    assert [p.succeeded for p in progress] == [True, False, True]
    assert progress[-1].percentage == 100
    assert progress[-1].last_chunk_id == "chunk-2"


def test_attach_analyses_matches_by_chunk_id() -> None:
    gateway = ScriptedGateway([GatewayError("down"), analysis_json(plotDevelopment="second")])
    chunks = [make_chunk(index) for index in range(2)]

    analyses = ChunkAnalyzer(gateway).analyze_all(chunks)
    annotated = attach_analyses(chunks, analyses)

    assert annotated[0].analysis is None
    assert annotated[1].analysis is not None
    assert annotated[1].analysis.plot_development == "second"


def test_analyze_all_contains_errors_of_any_type() -> None:
    gateway = ScriptedGateway([TimeoutError("read timed out"), KeyError("response")])
    chunks = [make_chunk(index) for index in range(2)]
    progress: list[AnalysisProgress] = []

    analyses = ChunkAnalyzer(gateway).analyze_all(chunks, on_progress=progress.append)

    assert analyses == []
    assert [p.succeeded for p in progress] == [False, False]
    assert len(gateway.prompts) == 2
