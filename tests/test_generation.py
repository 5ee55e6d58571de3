"""
tests.test_generation
~~~~~~~~~~~~~~~~~~~~~

GenerationPipeline 三阶段编排测试。

外部媒体服务由 ``FakeMediaService`` 代替，可以按场景挂起 / 失败，
用来验证阶段推进、失败终态、重置脱离等行为。
"""
from __future__ import annotations

import asyncio

import pytest

from conftest import ALICE, BOB, MERGED_URL, SCENE_A, SCENE_B, FakeMediaService, wait_until
from sceneparty.core.genres import GENRES
from sceneparty.schemas.rooms import RoomCharacter, RoomOutfit, RoomSnapshot
from sceneparty.services.generation import GenerationPipeline
from sceneparty.services.room_registry import RoomRegistry

SCENES = [SCENE_A, SCENE_B]


def add_character(registry: RoomRegistry, room_id: str, asset_id: str = "c1", user_id: str = ALICE.id) -> None:
    registry.add_character(
        room_id,
        RoomCharacter(
            id=asset_id, name=asset_id, image_url=f"https://img.test/{asset_id}.png",
            user_id=user_id, user_name=user_id,
        ),
    )


@pytest.fixture()
def registry() -> RoomRegistry:
    return RoomRegistry()


@pytest.fixture()
def pipeline(registry: RoomRegistry, fake_media: FakeMediaService) -> GenerationPipeline:
    return GenerationPipeline(registry, fake_media, default_video_prompt="walk slowly")  # type: ignore[arg-type]


@pytest.fixture()
def room_id(registry: RoomRegistry) -> str:
    room_id = registry.create_room()
    add_character(registry, room_id)
    return room_id


def stage_of(registry: RoomRegistry, room_id: str) -> str | None:
    room = registry.get_room(room_id)
    assert room is not None
    return room.generation.stage if room.generation else None


class TestStartGuards:
    """测试 start() 的准入判断。"""

    @pytest.mark.asyncio
    async def test_unknown_room(self, pipeline: GenerationPipeline) -> None:
        assert pipeline.start("missing") == "not_found"

    @pytest.mark.asyncio
    async def test_room_without_characters(self, registry: RoomRegistry, pipeline: GenerationPipeline) -> None:
        empty = registry.create_room()
        assert pipeline.start(empty) == "no_characters"
        assert stage_of(registry, empty) is None

    @pytest.mark.asyncio
    async def test_unknown_genre(self, pipeline: GenerationPipeline, room_id: str) -> None:
        assert pipeline.start(room_id, genre_id="no-such-genre") == "unknown_genre"

    @pytest.mark.asyncio
    async def test_single_in_flight_generation(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        """进行中的生成任务存在时再次 start 返回 in_progress，状态不变。"""
        fake_media.image_gates[SCENE_A] = asyncio.Event()
        fake_media.image_gates[SCENE_B] = asyncio.Event()

        assert pipeline.start(room_id, scenes=SCENES) == "accepted"
        room = registry.get_room(room_id)
        assert room is not None
        before = room.generation

        assert pipeline.start(room_id, scenes=SCENES) == "in_progress"
        assert room.generation is before

        await pipeline.shutdown()

    @pytest.mark.asyncio
    async def test_start_sets_initial_state_synchronously(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        fake_media.image_gates[SCENE_A] = asyncio.Event()
        fake_media.image_gates[SCENE_B] = asyncio.Event()

        pipeline.start(room_id, scenes=SCENES)

        room = registry.get_room(room_id)
        assert room is not None and room.generation is not None
        assert room.generation.stage == "generating-images"
        assert len(room.generation.pipelines) == 2
        assert all(not p.image_done and not p.video_done for p in room.generation.pipelines)
        assert pipeline.running_count == 1

        await pipeline.shutdown()


class TestEndToEnd:
    """测试完整流程。"""

    @pytest.mark.asyncio
    async def test_reaches_done_with_merged_video(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        stages: list[str] = []

        def record(snapshot: RoomSnapshot) -> None:
            if snapshot.generation and (not stages or stages[-1] != snapshot.generation.stage):
                stages.append(snapshot.generation.stage)

        registry.subscribe(room_id, record)

        assert pipeline.start(room_id, scenes=SCENES) == "accepted"
        await wait_until(lambda: stage_of(registry, room_id) == "done")

        room = registry.get_room(room_id)
        assert room is not None and room.generation is not None
        assert room.generation.merged_video_url == MERGED_URL
        assert room.generation.error is None
        assert all(p.image_done and p.video_done for p in room.generation.pipelines)
        assert [p.video_url for p in room.generation.pipelines] == [
            f"{SCENE_A}#image#video", f"{SCENE_B}#image#video",
        ]
        assert stages == ["generating-images", "generating-videos", "merging", "done"]
        # 拼接顺序与场景顺序一致
        assert fake_media.merge_calls == [[f"{SCENE_A}#image#video", f"{SCENE_B}#image#video"]]
        await wait_until(lambda: pipeline.running_count == 0)

    @pytest.mark.asyncio
    async def test_compose_inputs_and_default_prompts(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        """合成输入按 角色 → 服装 → 场景 排列，并使用按数量推导的默认 Prompt。"""
        add_character(registry, room_id, "c2", BOB.id)
        registry.add_outfit(
            room_id,
            RoomOutfit(
                id="o1", name="Coat", image_url="https://img.test/o1.png",
                user_id=ALICE.id, user_name=ALICE.name,
            ),
        )

        pipeline.start(room_id, scenes=[SCENE_A])
        await wait_until(lambda: stage_of(registry, room_id) == "done")

        prompt, inputs = fake_media.compose_calls[0]
        assert prompt == "Place all characters into the scene wearing the provided outfits"
        assert inputs == [
            "https://img.test/c1.png", "https://img.test/c2.png", "https://img.test/o1.png", SCENE_A,
        ]
        assert fake_media.animate_calls[0][0] == "walk slowly"

    @pytest.mark.asyncio
    async def test_explicit_prompts_win(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        pipeline.start(room_id, image_prompt="custom image", video_prompt="custom video", scenes=[SCENE_A])
        await wait_until(lambda: stage_of(registry, room_id) == "done")

        assert fake_media.compose_calls[0][0] == "custom image"
        assert fake_media.animate_calls[0][0] == "custom video"

    @pytest.mark.asyncio
    async def test_default_genre_scenes(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        pipeline.start(room_id)
        await wait_until(lambda: stage_of(registry, room_id) == "done")

        noir = next(g for g in GENRES if g.id == "noir")
        assert [inputs[-1] for _, inputs in fake_media.compose_calls] == noir.scenes

    @pytest.mark.asyncio
    async def test_restart_after_done(
        self, registry: RoomRegistry, pipeline: GenerationPipeline, room_id: str,
    ) -> None:
        pipeline.start(room_id, scenes=[SCENE_A])
        await wait_until(lambda: stage_of(registry, room_id) == "done")

        assert pipeline.start(room_id, scenes=SCENES) == "accepted"
        room = registry.get_room(room_id)
        assert room is not None and room.generation is not None
        assert room.generation.stage == "generating-images"
        assert len(room.generation.pipelines) == 2
        await wait_until(lambda: stage_of(registry, room_id) == "done")


class TestStageAdvance:
    """测试同一阶段全部结束后才推进，任一失败即进入 error。"""

    @pytest.mark.asyncio
    async def test_stage_waits_for_slowest_scene(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        gate = asyncio.Event()
        fake_media.image_gates[SCENE_B] = gate

        pipeline.start(room_id, scenes=SCENES)
        room = registry.get_room(room_id)
        assert room is not None
        await wait_until(lambda: room.generation is not None and room.generation.pipelines[0].image_done)

        assert stage_of(registry, room_id) == "generating-images"
        assert fake_media.animate_calls == []

        gate.set()
        await wait_until(lambda: stage_of(registry, room_id) == "done")

    @pytest.mark.asyncio
    async def test_one_failed_scene_fails_run(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        """一个场景失败：不会进入视频阶段，已完成场景的进度保留。"""
        gate = asyncio.Event()
        fake_media.image_gates[SCENE_B] = gate
        fake_media.failing_images.add(SCENE_B)

        pipeline.start(room_id, scenes=SCENES)
        room = registry.get_room(room_id)
        assert room is not None
        await wait_until(lambda: room.generation is not None and room.generation.pipelines[0].image_done)
        gate.set()
        await wait_until(lambda: stage_of(registry, room_id) == "error")

        assert room.generation is not None
        assert room.generation.error == f"compose failed for {SCENE_B}"
        assert room.generation.merged_video_url is None
        assert room.generation.pipelines[0].image_done is True
        assert room.generation.pipelines[1].image_done is False
        assert fake_media.animate_calls == []

    @pytest.mark.asyncio
    async def test_empty_image_is_hard_failure(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        fake_media.empty_images.add(SCENE_B)

        pipeline.start(room_id, scenes=SCENES)
        await wait_until(lambda: stage_of(registry, room_id) == "error")

        room = registry.get_room(room_id)
        assert room is not None and room.generation is not None
        assert room.generation.error == "场景 2 未返回图片"

    @pytest.mark.asyncio
    async def test_video_failure(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        fake_media.failing_videos.add(f"{SCENE_A}#image")

        pipeline.start(room_id, scenes=SCENES)
        await wait_until(lambda: stage_of(registry, room_id) == "error")

        room = registry.get_room(room_id)
        assert room is not None and room.generation is not None
        assert all(p.image_done for p in room.generation.pipelines)
        assert room.generation.pipelines[0].video_done is False
        assert fake_media.merge_calls == []

    @pytest.mark.asyncio
    async def test_empty_merge_result(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        fake_media.merge_result = None

        pipeline.start(room_id, scenes=SCENES)
        await wait_until(lambda: stage_of(registry, room_id) == "error")

        room = registry.get_room(room_id)
        assert room is not None and room.generation is not None
        assert room.generation.error == "拼接服务未返回视频"
        assert all(p.video_done for p in room.generation.pipelines)

    @pytest.mark.asyncio
    async def test_restart_after_error(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        fake_media.merge_result = None
        pipeline.start(room_id, scenes=SCENES)
        await wait_until(lambda: stage_of(registry, room_id) == "error")

        fake_media.merge_result = MERGED_URL
        assert pipeline.start(room_id, scenes=SCENES) == "accepted"
        await wait_until(lambda: stage_of(registry, room_id) == "done")


class TestReset:
    """测试重置：旧任务的后续写入全部失效。"""

    @pytest.mark.asyncio
    async def test_reset_unknown_room(self, pipeline: GenerationPipeline) -> None:
        assert pipeline.reset("missing") is False

    @pytest.mark.asyncio
    async def test_reset_detaches_in_flight_run(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        """重置后旧任务完成，生成状态保持为空，不会再"复活"。"""
        gate = asyncio.Event()
        fake_media.image_gates[SCENE_A] = gate
        fake_media.image_gates[SCENE_B] = gate

        pipeline.start(room_id, scenes=SCENES)
        assert pipeline.reset(room_id) is True
        assert stage_of(registry, room_id) is None

        gate.set()
        await wait_until(lambda: pipeline.running_count == 0)

        assert stage_of(registry, room_id) is None
        assert fake_media.animate_calls == []

    @pytest.mark.asyncio
    async def test_stale_run_cannot_touch_new_run(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        """重置后立即开始新任务，旧任务的结果不会写进新任务的进度。"""
        old_gate = asyncio.Event()
        fake_media.image_gates[SCENE_A] = old_gate

        pipeline.start(room_id, scenes=[SCENE_A])
        await wait_until(lambda: len(fake_media.compose_calls) == 1)
        pipeline.reset(room_id)
        fake_media.image_gates.pop(SCENE_A)
        new_gate = asyncio.Event()
        fake_media.image_gates[SCENE_B] = new_gate

        assert pipeline.start(room_id, scenes=[SCENE_B]) == "accepted"
        room = registry.get_room(room_id)
        assert room is not None and room.generation is not None
        new_run = room.generation.run_id

        old_gate.set()
        await wait_until(lambda: pipeline.running_count == 1)

        assert room.generation is not None
        assert room.generation.run_id == new_run
        assert room.generation.stage == "generating-images"
        assert room.generation.pipelines[0].image_done is False

        new_gate.set()
        await wait_until(lambda: stage_of(registry, room_id) == "done")
        assert room.generation.pipelines[0].image_url == f"{SCENE_B}#image"

    @pytest.mark.asyncio
    async def test_stale_failure_is_not_written(
        self, registry: RoomRegistry, pipeline: GenerationPipeline,
        fake_media: FakeMediaService, room_id: str,
    ) -> None:
        gate = asyncio.Event()
        fake_media.image_gates[SCENE_A] = gate
        fake_media.failing_images.add(SCENE_A)

        pipeline.start(room_id, scenes=[SCENE_A])
        pipeline.reset(room_id)
        gate.set()
        await wait_until(lambda: pipeline.running_count == 0)

        assert stage_of(registry, room_id) is None


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_cancels_runs(
        self, pipeline: GenerationPipeline, fake_media: FakeMediaService, room_id: str,
    ) -> None:
        fake_media.image_gates[SCENE_A] = asyncio.Event()

        pipeline.start(room_id, scenes=[SCENE_A])
        await pipeline.shutdown()

        assert pipeline.running_count == 0
