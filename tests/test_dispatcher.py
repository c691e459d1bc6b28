"""Tests for the source dispatcher, end to end with real subprocesses."""

from flex_agent.context import EVENT_DROP_COUNT
from flex_agent.dispatcher import Dispatcher, plan_waves


def event_types(context) -> list[str]:
    return [m["event_type"] for m in context.payload.metrics]


class TestPlanWaves:
    """Test wave planning for scratch-store dependencies."""

    def test_independent_apis_share_a_wave(self, make_api):
        apis = [make_api(name="a", file="/tmp/a"), make_api(name="b", url="http://x")]
        assert [[a.name for a in w] for w in plan_waves(apis)] == [["a", "b"]]

    def test_readers_start_new_waves(self, make_api):
        apis = [
            make_api(name="a", commands=[{"run": "echo a"}]),
            make_api(name="b", cache="a"),
            make_api(name="c", commands=[{"run": "echo ${lookup:x}"}]),
            make_api(name="d", url="http://${var:host}/"),
            make_api(name="e", file="/tmp/e"),
        ]
        assert [[a.name for a in w] for w in plan_waves(apis)] == [["a"], ["b"], ["c"], ["d", "e"]]


class TestShellDispatch:
    """Test command execution and emission."""

    async def test_async_commands_each_produce_a_batch(self, context, make_config):
        """Test 10 async commands with metric_api produce 10 metric batches."""
        commands = [{"name": f"c{i}", "run": f"echo 'value: {i}'"} for i in range(10)]
        config = make_config(
            [{"name": "echo", "commands_async": True, "commands": commands}],
            metric_api=True,
        )

        result = await Dispatcher(config, context).run()

        assert result.success
        assert len(result.datasets) == 10
        batches = context.store.snapshot()
        assert len(batches) == 10
        values = sorted(b.metrics[0]["value"] for b in batches)
        assert values == list(range(10))
        assert context.payload.is_empty()

    async def test_sequential_commands_keep_order(self, context, make_config):
        config = make_config(
            [{"name": "seq", "commands": [{"run": "echo 'a: 1'"}, {"run": "echo 'a: 2'"}]}]
        )
        result = await Dispatcher(config, context).run()

        assert [d.unit for d in result.datasets] == ["seq:0", "seq:1"]
        assert [m["a"] for m in context.payload.metrics] == ["1", "2"]
        assert event_types(context) == ["seqSample", "seqSample"]

    async def test_failed_command_is_isolated(self, context, make_config):
        """Test one failing command does not affect its siblings."""
        config = make_config(
            [
                {
                    "name": "mixed",
                    "commands": [
                        {"run": "echo 'ok: 1'"},
                        {"run": "exit 3"},
                        {"run": "echo 'ok: 2'"},
                    ],
                }
            ]
        )
        result = await Dispatcher(config, context).run()

        assert not result.success
        assert [f.unit for f in result.failures] == ["mixed:1"]
        assert len(result.datasets) == 2
        assert context.counters.read(EVENT_DROP_COUNT) == 1

    async def test_command_timeout(self, context, make_config):
        config = make_config(
            [
                {
                    "name": "slow",
                    "commands_async": True,
                    "commands": [
                        {"run": "exec sleep 5", "timeout": 200},
                        {"run": "echo 'fast: 1'"},
                    ],
                }
            ]
        )
        result = await Dispatcher(config, context).run()

        assert len(result.failures) == 1
        assert result.failures[0].timed_out
        assert context.payload.metrics[0]["fast"] == "1"

    async def test_ignore_output_is_stored_not_emitted(self, context, make_config):
        config = make_config(
            [{"name": "quiet", "commands": [{"run": "echo 'a: 1'", "ignore_output": True}]}]
        )
        result = await Dispatcher(config, context).run()

        assert result.datasets == []
        assert config.datastore["quiet"] == ["a: 1\n"]
        assert context.payload.is_empty()

    async def test_command_event_type_and_attributes(self, context, make_config):
        config = make_config(
            [
                {
                    "name": "x",
                    "commands": [
                        {"run": "echo 'a: 1'", "event_type": "customSample", "custom_attributes": {"role": "db"}}
                    ],
                }
            ],
            custom_attributes={"env": "prod"},
        )
        await Dispatcher(config, context).run()

        assert context.payload.metrics == [{"a": "1", "env": "prod", "role": "db", "event_type": "customSample"}]


class TestScratchStores:
    """Test datastore, lookups and variables across APIs."""

    async def test_cache_replays_earlier_output(self, context, make_config):
        config = make_config(
            [
                {"name": "first", "commands": [{"run": "echo 'a: 1'", "ignore_output": True}]},
                {"name": "second", "cache": "first"},
            ]
        )
        await Dispatcher(config, context).run()

        assert context.payload.metrics == [{"a": "1", "event_type": "secondSample"}]

    async def test_lookups_fan_out(self, context, make_config):
        """Test stored lookup values expand into one command per value."""
        config = make_config(
            [
                {
                    "name": "hosts",
                    "commands": [{"run": "printf 'host\\nalpha\\nbeta\\n'", "split": "horizontal"}],
                    "store_lookups": {"names": "host"},
                },
                {"name": "check", "commands": [{"run": "echo 'target: ${lookup:names}'"}]},
            ]
        )
        result = await Dispatcher(config, context).run()

        assert config.lookup_store == {"names": ["alpha", "beta"]}
        targets = sorted(m["target"] for m in context.payload.metrics if m["event_type"] == "checkSample")
        assert targets == ["alpha", "beta"]
        assert result.success

    async def test_missing_lookup_skips_fetch(self, context, make_config):
        config = make_config([{"name": "check", "commands": [{"run": "echo 'x: ${lookup:none}'"}]}])
        result = await Dispatcher(config, context).run()

        assert result.datasets == []
        assert result.success

    async def test_variables(self, context, make_config):
        config = make_config(
            [
                {
                    "name": "ver",
                    "commands": [{"run": "echo 'version: 7'"}],
                    "store_variables": {"v": "version"},
                },
                {"name": "use", "commands": [{"run": "echo 'seen: ${var:v}'"}]},
            ]
        )
        await Dispatcher(config, context).run()

        assert config.variable_store["v"] == "7"
        assert {"seen": "7", "event_type": "useSample"} in context.payload.metrics


class TestOtherSources:
    """Test file sources, merging and broken definitions."""

    async def test_file_source(self, context, make_config, tmp_path):
        path = tmp_path / "status.txt"
        path.write_text("queue: 5\nworkers: 2\n")
        config = make_config([{"name": "status", "file": str(path)}])

        await Dispatcher(config, context).run()

        assert context.payload.metrics == [{"queue": "5", "workers": "2", "event_type": "statusSample"}]

    async def test_missing_file_fails(self, context, make_config, tmp_path):
        config = make_config([{"name": "gone", "file": str(tmp_path / "missing.txt")}])
        result = await Dispatcher(config, context).run()

        assert len(result.failures) == 1
        assert "cannot read" in result.failures[0].error

    async def test_api_without_source(self, context, make_config):
        config = make_config([{"name": "empty"}])
        result = await Dispatcher(config, context).run()

        assert result.failures[0].error == "no usable source selector"

    async def test_invalid_stage_is_reported(self, context, make_config):
        config = make_config([{"name": "bad", "commands": [{"run": "echo 'a: 1'"}], "math": {"x": "${a} +"}}])
        result = await Dispatcher(config, context).run()

        assert not result.success
        assert result.datasets == []

    async def test_invalid_api_leaves_siblings_intact(self, context, make_config):
        """Test an API with a broken replacement fails alone and its siblings still emit."""
        config = make_config(
            [
                {"name": "good", "commands": [{"run": "echo 'a: 1'"}]},
                {"name": "bad", "commands": [{"run": "echo 'b: x'"}], "value_transformer": {"b": "(x)=>\\2"}},
                {"name": "renamed", "commands": [{"run": "echo 'c: 1'"}], "rename_keys": {"c": "\\1"}},
            ]
        )
        result = await Dispatcher(config, context).run()

        assert sorted(f.unit for f in result.failures) == ["bad", "renamed"]
        assert context.payload.metrics == [{"a": "1", "event_type": "goodSample"}]

    async def test_unexpected_error_fails_only_its_api(self, context, make_config, monkeypatch):
        config = make_config(
            [
                {"name": "good", "commands": [{"run": "echo 'a: 1'"}]},
                {"name": "boom", "commands": [{"run": "echo 'b: 1'"}]},
            ]
        )
        dispatcher = Dispatcher(config, context)
        run_api = dispatcher._run_api

        async def _run_api(api):
            if api.name == "boom":
                raise RuntimeError("unexpected")
            await run_api(api)

        monkeypatch.setattr(dispatcher, "_run_api", _run_api)
        result = await dispatcher.run()

        assert [f.unit for f in result.failures] == ["boom"]
        assert context.payload.metrics == [{"a": "1", "event_type": "goodSample"}]

    async def test_sample_filter_drops_are_counted(self, context, make_config):
        config = make_config(
            [
                {
                    "name": "codes",
                    "commands": [{"run": "printf 'code\\n200\\n500\\n'", "split": "horizontal"}],
                    "sample_filter": [{"code": "^5"}],
                }
            ]
        )
        result = await Dispatcher(config, context).run()

        assert [m["code"] for m in context.payload.metrics] == ["200"]
        assert result.datasets[0].dropped == 1
        assert context.counters.read(EVENT_DROP_COUNT) == 1

    async def test_sample_merge(self, context, make_config):
        config = make_config(
            [
                {"name": "a", "commands": [{"run": "echo 'x: 1'"}]},
                {"name": "b", "commands": [{"run": "echo 'y: 2'"}]},
            ],
            sample_merge=[{"event_type": "combinedSample", "samples": ["aSample", "bSample"]}],
        )
        await Dispatcher(config, context).run()

        assert context.payload.metrics == [{"x": "1", "y": "2", "event_type": "combinedSample"}]
