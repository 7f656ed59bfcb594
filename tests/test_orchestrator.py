from __future__ import annotations

import asyncio
import sqlite3

import pytest

from lumina_studio.config import StudioSettings
from lumina_studio.dispatcher import ModelDispatcher
from lumina_studio.errors import EmptyResponseError, RemoteCallError, StoreUnavailableError, UnsupportedModelError
from lumina_studio.orchestrator import GenerationOrchestrator
from lumina_studio.prompting import PROMPT_TEMPLATES, UPSCALE_INSTRUCTION, UPSCALE_LABEL

SINGLE_CALL_MODEL = "gemini-2.5-flash-image"
BATCH_MODEL = "imagen-4.0-generate-001"


@pytest.fixture
def orchestrator(fake_client, store) -> GenerationOrchestrator:
    return GenerationOrchestrator(ModelDispatcher(client=fake_client), store)


def _slot_images(responses, delays: dict[int, float] | None = None, completed: list[int] | None = None):
    async def handler(index, kwargs):
        await asyncio.sleep((delays or {}).get(index, 0.0))
        if completed is not None:
            completed.append(index)
        return responses.content(responses.image_part(f"img-{index}".encode()))

    return handler


def test_generate_given_red_fox_scenario_when_two_images_requested_then_both_are_persisted_as_newest(
    orchestrator,
    fake_client,
    responses,
    store,
) -> None:
    # Given
    fake_client.models.on_generate_content = _slot_images(responses)

    async def scenario():
        artifacts = await orchestrator.generate(
            "a red fox", style="none", aspect_ratio="1:1", model_name=SINGLE_CALL_MODEL, count=2
        )
        return artifacts, await store.list_all()

    # When
    artifacts, history = asyncio.run(scenario())

    # Then
    assert len(artifacts) == 2
    assert len(fake_client.models.calls) == 2
    for artifact in artifacts:
        assert artifact.kind == "generated"
        assert artifact.prompt == "a red fox"
        assert artifact.aspect_ratio == "1:1"
        assert artifact.model_name == SINGLE_CALL_MODEL
    assert len(history) >= 2
    assert {item.artifact_id for item in history[:2]} == {item.artifact_id for item in artifacts}


def test_generate_given_out_of_order_completion_when_four_images_requested_then_results_follow_slot_order(
    orchestrator,
    fake_client,
    responses,
) -> None:
    # Given
    completed: list[int] = []
    fake_client.models.on_generate_content = _slot_images(
        responses,
        delays={0: 0.05, 1: 0.0, 2: 0.03, 3: 0.01},
        completed=completed,
    )

    # When
    artifacts = asyncio.run(orchestrator.generate("a red fox", model_name=SINGLE_CALL_MODEL, count=4))

    # Then
    assert completed[0] == 1
    assert completed[-1] == 0
    assert [artifact.payload.data for artifact in artifacts] == [b"img-0", b"img-1", b"img-2", b"img-3"]


def test_generate_given_one_failing_slot_when_batch_runs_then_operation_fails_and_nothing_is_persisted(
    orchestrator,
    fake_client,
    responses,
    store,
    new_artifact,
) -> None:
    # Given
    completed: list[int] = []

    async def handler(index, kwargs):
        if index == 2:
            raise TimeoutError("upstream timed out")
        await asyncio.sleep(0.01)
        completed.append(index)
        return responses.content(responses.image_part(b"ok"))

    fake_client.models.on_generate_content = handler
    asyncio.run(store.insert(new_artifact))
    before = asyncio.run(store.count())

    # When
    with pytest.raises(RemoteCallError):
        asyncio.run(orchestrator.generate("a red fox", model_name=SINGLE_CALL_MODEL, count=4))

    # Then
    assert sorted(completed) == [0, 1, 3]
    assert asyncio.run(store.count()) == before


def test_generate_given_storage_failure_on_second_row_when_batch_persists_then_no_row_is_kept(
    monkeypatch: pytest.MonkeyPatch,
    orchestrator,
    fake_client,
    responses,
    store,
    new_artifact,
) -> None:
    # Given
    fake_client.models.on_generate_content = _slot_images(responses)
    asyncio.run(store.insert(new_artifact))
    before = asyncio.run(store.count())
    notifications: list[str] = []
    store.subscribe(lambda: notifications.append("changed"))
    write_row = store._write_row
    writes: list[str] = []

    def failing_second_write(conn, artifact):
        writes.append(artifact.artifact_id)
        if len(writes) == 2:
            raise sqlite3.OperationalError("disk I/O error")
        write_row(conn, artifact)

    monkeypatch.setattr(store, "_write_row", failing_second_write)

    # When
    with pytest.raises(StoreUnavailableError, match="disk I/O error"):
        asyncio.run(orchestrator.generate("a red fox", model_name=SINGLE_CALL_MODEL, count=3))

    # Then
    assert len(writes) == 2
    assert asyncio.run(store.count()) == before
    assert notifications == []


def test_generate_given_slot_with_text_only_reply_when_batch_runs_then_empty_response_error_and_no_persistence(
    orchestrator,
    fake_client,
    responses,
    store,
) -> None:
    # Given
    async def handler(index, kwargs):
        if index == 1:
            return responses.content(responses.text_part("blocked by safety filters"))
        return responses.content(responses.image_part(b"ok"))

    fake_client.models.on_generate_content = handler

    # When
    with pytest.raises(EmptyResponseError):
        asyncio.run(orchestrator.generate("a red fox", model_name=SINGLE_CALL_MODEL, count=2))

    # Then
    assert asyncio.run(store.count()) == 0


def test_generate_given_partial_policy_when_one_slot_fails_then_survivors_are_persisted_in_slot_order(
    fake_client,
    responses,
    store,
) -> None:
    # Given
    async def handler(index, kwargs):
        if index == 1:
            raise ConnectionError("reset")
        return responses.content(responses.image_part(f"img-{index}".encode()))

    fake_client.models.on_generate_content = handler
    orchestrator = GenerationOrchestrator(
        ModelDispatcher(client=fake_client),
        store,
        StudioSettings(batch_policy="partial"),
    )

    # When
    artifacts = asyncio.run(orchestrator.generate("a red fox", model_name=SINGLE_CALL_MODEL, count=3))

    # Then
    assert [artifact.payload.data for artifact in artifacts] == [b"img-0", b"img-2"]
    assert asyncio.run(store.count()) == 2


def test_generate_given_partial_policy_when_every_slot_fails_then_first_error_is_raised(
    fake_client,
    store,
) -> None:
    # Given
    async def handler(index, kwargs):
        raise ConnectionError(f"reset {index}")

    fake_client.models.on_generate_content = handler
    orchestrator = GenerationOrchestrator(
        ModelDispatcher(client=fake_client),
        store,
        StudioSettings(batch_policy="partial"),
    )

    # When
    with pytest.raises(RemoteCallError, match="reset 0"):
        asyncio.run(orchestrator.generate("a red fox", model_name=SINGLE_CALL_MODEL, count=2))

    # Then
    assert asyncio.run(store.count()) == 0


def test_generate_given_batch_timeout_when_slots_are_slow_then_remote_call_error_and_nothing_persisted(
    fake_client,
    responses,
    store,
) -> None:
    # Given
    fake_client.models.on_generate_content = _slot_images(responses, delays={0: 0.0, 1: 1.0})
    orchestrator = GenerationOrchestrator(
        ModelDispatcher(client=fake_client),
        store,
        StudioSettings(batch_timeout=0.05),
    )

    # When
    with pytest.raises(RemoteCallError, match="timed out"):
        asyncio.run(orchestrator.generate("a red fox", model_name=SINGLE_CALL_MODEL, count=2))

    # Then
    assert asyncio.run(store.count()) == 0


def test_generate_given_batch_capable_model_when_three_images_requested_then_one_call_and_three_artifacts(
    orchestrator,
    fake_client,
    responses,
) -> None:
    # Given
    fake_client.models.on_generate_images = _returning(responses.images(b"a", b"b", b"c"))

    # When
    artifacts = asyncio.run(
        orchestrator.generate(
            "castle",
            style="pixel-art",
            negative_prompt="people",
            aspect_ratio="16:9",
            model_name=BATCH_MODEL,
            count=3,
        )
    )

    # Then
    assert len(fake_client.models.calls) == 1
    assert fake_client.models.calls[0][1]["prompt"] == "Pixel Art style. castle --no people"
    assert [artifact.payload.data for artifact in artifacts] == [b"a", b"b", b"c"]
    assert {artifact.prompt for artifact in artifacts} == {"Pixel Art style. castle --no people"}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"count": 0},
        {"count": 5},
        {"aspect_ratio": "21:9"},
        {"style": "unknown-style"},
    ],
)
def test_generate_given_invalid_arguments_when_called_then_value_error_before_any_remote_call(
    orchestrator,
    fake_client,
    kwargs,
) -> None:
    # Given
    # Invalid generation arguments.

    # When
    with pytest.raises(ValueError):
        asyncio.run(orchestrator.generate("a red fox", model_name=SINGLE_CALL_MODEL, **kwargs))

    # Then
    assert fake_client.models.calls == []


def test_edit_given_images_when_edited_then_one_edited_artifact_is_persisted(
    orchestrator,
    fake_client,
    responses,
    store,
    png_image,
) -> None:
    # Given
    fake_client.models.on_generate_content = _returning(responses.content(responses.image_part(b"edited")))

    # When
    artifact = asyncio.run(orchestrator.edit([png_image, png_image], "add a hat", aspect_ratio="4:3"))

    # Then
    assert artifact.kind == "edited"
    assert artifact.prompt == "add a hat"
    assert artifact.aspect_ratio == "4:3"
    assert artifact.payload.data == b"edited"
    assert [item.artifact_id for item in asyncio.run(store.list_all())] == [artifact.artifact_id]


def test_edit_given_non_editing_model_when_edited_then_unsupported_model_error_and_nothing_persisted(
    orchestrator,
    store,
    png_image,
) -> None:
    # Given
    # The batch-capable family cannot edit.

    # When
    with pytest.raises(UnsupportedModelError):
        asyncio.run(orchestrator.edit([png_image], "add a hat", model_name=BATCH_MODEL))

    # Then
    assert asyncio.run(store.count()) == 0


def test_upscale_given_image_when_upscaled_then_instruction_is_sent_but_label_is_recorded(
    orchestrator,
    fake_client,
    responses,
    png_image,
) -> None:
    # Given
    fake_client.models.on_generate_content = _returning(responses.content(responses.image_part(b"big")))

    # When
    artifact = asyncio.run(orchestrator.upscale([png_image]))

    # Then
    sent_parts = fake_client.models.calls[0][1]["contents"]
    assert sent_parts[-1].text == UPSCALE_INSTRUCTION
    assert artifact.prompt == UPSCALE_LABEL
    assert artifact.kind == "edited"


def test_analyze_given_image_when_analyzed_then_text_is_returned_and_not_persisted(
    orchestrator,
    fake_client,
    responses,
    store,
    png_image,
) -> None:
    # Given
    fake_client.models.on_generate_content = _returning(responses.text("Two boats at dusk."))

    # When
    text = asyncio.run(orchestrator.analyze(png_image, "What is here?"))

    # Then
    assert text == "Two boats at dusk."
    assert fake_client.models.calls[0][1]["model"] == "gemini-2.5-flash"
    assert asyncio.run(store.count()) == 0


def test_analyze_given_remote_failure_when_analyzed_then_error_propagates(
    orchestrator,
    fake_client,
    png_image,
) -> None:
    # Given
    async def failing(index, kwargs):
        raise ConnectionError("offline")

    fake_client.models.on_generate_content = failing

    # When / Then
    with pytest.raises(RemoteCallError):
        asyncio.run(orchestrator.analyze(png_image))


def test_enhance_prompt_given_remote_failure_when_enhanced_then_original_is_returned(
    orchestrator,
    fake_client,
) -> None:
    # Given
    async def failing(index, kwargs):
        raise ConnectionError("offline")

    fake_client.models.on_generate_content = failing

    # When
    enhanced = asyncio.run(orchestrator.enhance_prompt("a red fox"))

    # Then
    assert enhanced == "a red fox"


def test_enhance_prompt_given_reply_when_enhanced_then_stripped_reply_is_returned_or_original_if_empty(
    orchestrator,
    fake_client,
    responses,
) -> None:
    # Given
    replies = iter(["  A red fox in golden hour light, soft fur detail.  ", ""])

    async def handler(index, kwargs):
        return responses.text(next(replies))

    fake_client.models.on_generate_content = handler

    # When
    first = asyncio.run(orchestrator.enhance_prompt("a red fox"))
    second = asyncio.run(orchestrator.enhance_prompt("a red fox"))

    # Then
    assert first == "A red fox in golden hour light, soft fur detail."
    assert second == "a red fox"


def test_enhance_prompt_given_missing_credentials_when_enhanced_then_original_is_returned(
    monkeypatch: pytest.MonkeyPatch,
    store,
) -> None:
    # Given
    monkeypatch.setattr("lumina_studio.dispatcher.resolve_gemini_api_key", lambda: None)
    orchestrator = GenerationOrchestrator(ModelDispatcher(), store)

    # When
    enhanced = asyncio.run(orchestrator.enhance_prompt("a red fox"))

    # Then
    assert enhanced == "a red fox"


def test_suggest_templates_given_structured_reply_when_suggested_then_sections_are_returned(
    orchestrator,
    fake_client,
    responses,
) -> None:
    # Given
    fake_client.models.on_generate_content = _returning(
        responses.text('{"sections": [{"category": "Ocean", "prompts": ["bioluminescent bay"]}]}')
    )

    # When
    sections = asyncio.run(orchestrator.suggest_templates())

    # Then
    assert [(section.category, section.prompts) for section in sections] == [("Ocean", ["bioluminescent bay"])]
    assert fake_client.models.calls[0][1]["config"].response_mime_type == "application/json"


def test_suggest_templates_given_failure_or_garbage_when_suggested_then_empty_list_and_seed_set_untouched(
    orchestrator,
    fake_client,
    responses,
) -> None:
    # Given
    replies = iter([ConnectionError("offline"), responses.text("not json at all")])

    async def handler(index, kwargs):
        reply = next(replies)
        if isinstance(reply, Exception):
            raise reply
        return reply

    fake_client.models.on_generate_content = handler
    seed_categories = [section.category for section in PROMPT_TEMPLATES]

    # When
    first = asyncio.run(orchestrator.suggest_templates())
    second = asyncio.run(orchestrator.suggest_templates())

    # Then
    assert first == []
    assert second == []
    assert [section.category for section in PROMPT_TEMPLATES] == seed_categories


def _returning(response):
    async def handler(index, kwargs):
        return response

    return handler
