"""Pipeline 单元测试：依赖排序、失败策略、幂等、取消、钩子"""

from __future__ import annotations

import threading

import pytest

from provisioner.core.exceptions import ConfigError, CyclicDependencyError, ExecutionError
from provisioner.core.models import FailurePolicy, StepResult, StepStatus
from provisioner.core.pipeline import Pipeline, PipelineHook, resolve_order
from provisioner.core.step import Step


class World:
    """内存"现场"：每个步骤对应一个布尔状态，动作把它置为 True"""

    def __init__(self) -> None:
        self.state: dict[str, bool] = {}
        self.actions: list[str] = []
        self.broken: set[str] = set()

    def step(self, name: str, *deps: str) -> Step:
        def act() -> None:
            self.actions.append(name)
            if name in self.broken:
                raise ExecutionError(f"{name}失败 (rc=1)", returncode=1, diagnostic=f"{name}: boom")
            self.state[name] = True

        return Step(
            name=name,
            precondition=lambda: self.state.get(name, False),
            action=act,
            depends_on=frozenset(deps),
        )


@pytest.fixture()
def world() -> World:
    return World()


def _names(results: list[StepResult]) -> list[str]:
    return [r.step for r in results]


class TestResolveOrder:
    @pytest.mark.parametrize("graph", [
        {"a": (), "b": ("a",), "c": ("b",)},
        {"c": ("b",), "b": ("a",), "a": ()},
        {"d": ("b", "c"), "c": ("a",), "b": ("a",), "a": ()},
        {"x": (), "y": (), "z": ("x", "y"), "w": ("z",)},
    ])
    def test_dependencies_come_first(self, world: World, graph: dict) -> None:
        steps = [world.step(n, *deps) for n, deps in graph.items()]
        ordered = [s.name for s in resolve_order(steps)]
        assert sorted(ordered) == sorted(graph)
        for name, deps in graph.items():
            for d in deps:
                assert ordered.index(d) < ordered.index(name)

    def test_ties_keep_declaration_order(self, world: World) -> None:
        steps = [world.step("b"), world.step("a"), world.step("c")]
        assert [s.name for s in resolve_order(steps)] == ["b", "a", "c"]

    def test_duplicate_name_raises(self, world: World) -> None:
        with pytest.raises(ConfigError, match="重复"):
            resolve_order([world.step("a"), world.step("a")])

    def test_unknown_dependency_raises(self, world: World) -> None:
        with pytest.raises(ConfigError, match="未定义"):
            resolve_order([world.step("a", "ghost")])

    def test_cycle_reports_path(self, world: World) -> None:
        steps = [world.step("a", "c"), world.step("b", "a"), world.step("c", "b"), world.step("d")]
        with pytest.raises(CyclicDependencyError) as exc_info:
            resolve_order(steps)
        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}

    def test_self_dependency_is_cycle(self, world: World) -> None:
        with pytest.raises(CyclicDependencyError) as exc_info:
            Pipeline([world.step("a", "a"), world.step("b")]).execute()
        assert exc_info.value.cycle == ["a", "a"]
        assert world.actions == []


class TestExecute:
    def test_runs_in_dependency_order(self, world: World) -> None:
        steps = [world.step("site", "bench"), world.step("bench", "user"), world.step("user")]
        report = Pipeline(steps).execute()
        assert _names(report.run_log) == ["user", "bench", "site"]
        assert all(r.status == StepStatus.COMPLETED for r in report.run_log)
        assert report.success

    def test_second_run_is_all_skipped(self, world: World) -> None:
        steps = [world.step("a"), world.step("b", "a"), world.step("c", "b")]
        Pipeline(steps).execute()
        again = Pipeline(steps).execute()
        assert [r.status for r in again.run_log] == [StepStatus.SKIPPED] * 3
        assert world.actions == ["a", "b", "c"]

    def test_cycle_fails_before_any_action(self, world: World) -> None:
        steps = [world.step("a", "b"), world.step("b", "a"), world.step("free")]
        with pytest.raises(CyclicDependencyError):
            Pipeline(steps).execute()
        assert world.actions == []

    def test_unexpected_error_keeps_partial_log(self, world: World) -> None:
        def bug() -> None:
            raise KeyError("site")

        steps = [
            world.step("a"),
            Step(name="b", precondition=lambda: False, action=bug, depends_on={"a"}),
            world.step("c", "b"),
        ]
        report = Pipeline(steps).execute()
        assert _names(report.run_log) == ["a", "b"]
        assert report.terminal_failure.step == "b"
        assert report.not_run == ["c"]

    def test_stop_on_first_failure_truncates_log(self, world: World) -> None:
        world.broken.add("b")
        steps = [world.step("a"), world.step("b", "a"), world.step("c", "b"), world.step("d")]
        report = Pipeline(steps).execute(FailurePolicy.STOP_ON_FIRST_FAILURE)

        assert _names(report.run_log) == ["a", "b"]
        assert report.run_log[-1].status == StepStatus.FAILED
        assert report.not_run == ["c", "d"]
        assert report.terminal_failure.step == "b"
        assert world.actions == ["a", "b"]
        assert not report.success

    def test_continue_and_report_runs_independent_steps(self, world: World) -> None:
        world.broken.add("b")
        steps = [world.step("a"), world.step("b", "a"), world.step("c", "b"), world.step("d")]
        report = Pipeline(steps).execute(FailurePolicy.CONTINUE_AND_REPORT)

        assert _names(report.run_log) == ["a", "b", "d"]
        assert report.not_run == ["c"]  # 依赖失败的步骤不执行
        assert "c" not in world.actions
        assert len(report.failures) == 1

    def test_resume_after_partial_failure(self, world: World) -> None:
        world.broken.add("b")
        steps = [world.step("a"), world.step("b", "a"), world.step("c", "b")]
        Pipeline(steps).execute()

        world.broken.clear()
        report = Pipeline(steps).execute()
        assert [r.status for r in report.run_log] == [
            StepStatus.SKIPPED, StepStatus.COMPLETED, StepStatus.COMPLETED,
        ]

    def test_cancel_checked_at_step_boundary(self, world: World) -> None:
        cancel = threading.Event()
        first = world.step("a")

        def act_and_cancel() -> None:
            first.action()
            cancel.set()

        steps = [
            Step(name="a", precondition=first.precondition, action=act_and_cancel),
            world.step("b", "a"),
        ]
        report = Pipeline(steps, cancel_event=cancel).execute()

        assert _names(report.run_log) == ["a"]
        assert report.run_log[0].status == StepStatus.COMPLETED
        assert report.cancelled is True
        assert report.not_run == ["b"]
        assert not report.success


class TestHooks:
    def test_hooks_receive_each_result(self, world: World) -> None:
        seen: list[str] = []

        class Collect(PipelineHook):
            def on_result(self, result: StepResult) -> None:
                seen.append(result.step)

        pipeline = Pipeline([world.step("a"), world.step("b", "a")])
        pipeline.subscribe(Collect())
        pipeline.execute()
        assert seen == ["a", "b"]

    def test_failing_hook_does_not_abort(self, world: World) -> None:
        class Broken(PipelineHook):
            def on_result(self, result: StepResult) -> None:
                raise RuntimeError("notify failed")

        pipeline = Pipeline([world.step("a"), world.step("b", "a")])
        pipeline.subscribe(Broken())
        report = pipeline.execute()
        assert report.success
