"""Tests for the transform pipeline."""

import pytest

from flex_agent.config import API
from flex_agent.errors import ConfigError
from flex_agent.pipeline import compile_pipeline
from flex_agent.sample import Sample


def run(api: API, *attribute_maps, custom_attributes=None) -> list[Sample]:
    pipeline = compile_pipeline(api, custom_attributes)
    return pipeline.run([Sample("testSample", dict(a)) for a in attribute_maps]).samples


class TestCompile:
    """Test pipeline compilation."""

    def test_stage_order(self, make_api):
        """Test stages follow the fixed order regardless of YAML order."""
        api = make_api(
            prefix="p_",
            math={"x": "1"},
            keep_keys=["a"],
            strip_keys=["b"],
            to_lower=True,
            sample_filter=[{"a": "z"}],
        )
        names = compile_pipeline(api).stage_names()
        assert names == ["strip_keys", "flatten", "keep_keys", "to_lower", "math", "sample_filter", "prefix"]

    def test_invalid_regex_is_config_error(self, make_api):
        with pytest.raises(ConfigError) as exc:
            compile_pipeline(make_api(remove_keys=["("]))
        assert exc.value.directive == "remove_keys"

    def test_invalid_math_is_config_error(self, make_api):
        with pytest.raises(ConfigError) as exc:
            compile_pipeline(make_api(math={"bad": "${a} +"}))
        assert exc.value.directive == "math.bad"
        assert exc.value.source == "test"

    def test_value_transformer_bad_group_reference(self, make_api):
        with pytest.raises(ConfigError) as exc:
            compile_pipeline(make_api(value_transformer={"b": "(x)=>\\2"}))
        assert exc.value.directive == "value_transformer.b"

    def test_rename_keys_bad_group_reference(self, make_api):
        with pytest.raises(ConfigError) as exc:
            compile_pipeline(make_api(rename_keys={"b": "\\1"}))
        assert exc.value.directive == "rename_keys"

    def test_valid_group_reference_compiles(self, make_api):
        pipeline = compile_pipeline(make_api(rename_keys={"^(\\w+)_count$": "\\1Count"}))
        sample = pipeline.run([Sample("s", {"req_count": 1})]).samples[0]
        assert sample.attributes == {"reqCount": 1}


class TestKeepRemove:
    """Test allow-list and deny-list stages."""

    def test_emptied_samples_are_counted(self, make_api):
        """Test samples left with no attributes are reported as dropped."""
        pipeline = compile_pipeline(make_api(remove_keys=["^tmp"]))
        result = pipeline.run([Sample("s", {"tmp": 1}), Sample("s", {"tmp": 2, "cpu": 3})])

        assert [s.attributes for s in result.samples] == [{"cpu": 3}]
        assert result.dropped == 1

    def test_keep_keys(self, make_api):
        samples = run(make_api(keep_keys=["^cpu"]), {"cpu.user": 1, "cpu.sys": 2, "mem": 3})
        assert samples[0].attributes == {"cpu.user": 1, "cpu.sys": 2}

    def test_remove_keys(self, make_api):
        samples = run(make_api(remove_keys=["mem"]), {"cpu": 1, "mem": 3, "memory": 4})
        assert samples[0].attributes == {"cpu": 1}

    def test_keep_then_remove_is_idempotent(self, make_api):
        """Test running keep/remove again on the output changes nothing."""
        api = make_api(keep_keys=["^disk", "^net"], remove_keys=["errors$"])
        first = run(api, {"disk.read": 1, "disk.errors": 2, "net.rx": 3, "load": 4})
        second = run(api, first[0].attributes)
        assert first[0].attributes == {"disk.read": 1, "net.rx": 3}
        assert second[0].attributes == first[0].attributes

    def test_remove_wins_over_keep(self, make_api):
        samples = run(make_api(keep_keys=["a"], remove_keys=["a"]), {"a": 1, "b": 2})
        assert samples == []


class TestSampleFilter:
    """Test sample dropping."""

    def test_status_5xx_dropped(self, make_api):
        """Test only the 500 sample is removed by status: ^5\\d\\d$."""
        api = make_api(sample_filter=[{"status": r"^5\d\d$"}])
        pipeline = compile_pipeline(api)
        result = pipeline.run([
            Sample("s", {"status": 200}),
            Sample("s", {"status": 500}),
            Sample("s", {"status": 404}),
        ])

        assert [s["status"] for s in result.samples] == [200, 404]
        assert result.dropped == 1

    def test_all_pairs_must_match(self, make_api):
        api = make_api(sample_filter=[{"status": "500", "path": "^/health"}])
        samples = run(api, {"status": "500", "path": "/api"}, {"status": "500", "path": "/health"})
        assert [s["path"] for s in samples] == ["/api"]

    def test_negated_pair(self, make_api):
        """Test a '!' key drops samples whose value does not match."""
        api = make_api(sample_filter=[{"!env": "^prod$"}])
        samples = run(api, {"env": "prod"}, {"env": "dev"})
        assert [s["env"] for s in samples] == ["prod"]


class TestStructure:
    """Test strip, flatten and sub_parse."""

    def test_strip_nested_path(self, make_api):
        samples = run(make_api(strip_keys=["meta>internal"]), {"meta": {"internal": 1, "id": 2}})
        assert samples[0].attributes == {"meta.id": 2}

    def test_flatten_nested_and_scalar_lists(self, make_api):
        samples = run(make_api(), {"a": {"b": {"c": 1}}, "tags": ["x", "y"]})
        assert samples[0].attributes == {"a.b.c": 1, "tags.0": "x", "tags.1": "y"}

    def test_list_of_objects_becomes_child_samples(self, make_api):
        samples = run(make_api(), {"host": "h1", "disks": [{"name": "sda"}, {"name": "sdb"}]})

        assert samples[0].attributes == {"host": "h1"}
        assert samples[1].attributes == {"parent.host": "h1", "name": "sda"}
        assert samples[2].attributes == {"parent.host": "h1", "name": "sdb"}

    def test_disable_parent_attr(self, make_api):
        samples = run(make_api(disable_parent_attr=True), {"host": "h1", "disks": [{"name": "sda"}]})
        assert samples[1].attributes == {"name": "sda"}

    def test_lazy_flatten(self, make_api):
        samples = run(make_api(lazy_flatten=["disks"]), {"disks": [{"name": "sda"}, {"name": "sdb"}]})
        assert samples[0].attributes == {"disks.0.name": "sda", "disks.1.name": "sdb"}

    def test_sub_parse_pairs(self, make_api):
        api = make_api(sub_parse=[{"type": "prefix", "key": "db", "split_by": [",", "="]}])
        samples = run(api, {"db0": "keys=10,expires=2"})
        assert samples[0].attributes == {"db0.keys": 10, "db0.expires": 2}

    def test_sub_parse_records(self, make_api):
        """Test a record separator turns each record into a sample."""
        api = make_api(sub_parse=[{"type": "match", "key": "slaves", "split_by": [",", "=", ";"]}])
        samples = run(api, {"role": "master", "slaves": "ip=a,port=1;ip=b,port=2"})

        assert [s.attributes for s in samples] == [
            {"role": "master", "slaves.ip": "a", "slaves.port": 1},
            {"role": "master", "slaves.ip": "b", "slaves.port": 2},
        ]

    def test_sample_keys_split(self, make_api):
        """Test matching keys move to their own samples and the rest stay behind."""
        api = make_api(sample_keys={"cpuSample": "^cpu\\.", "memSample": "^mem"})
        samples = run(api, {"host": "h1", "cpu.user": 1, "cpu.sys": 2, "mem.free": 3})

        assert [(s.event_type, s.attributes) for s in samples] == [
            ("testSample", {"host": "h1"}),
            ("cpuSample", {"cpu.user": 1, "cpu.sys": 2}),
            ("memSample", {"mem.free": 3}),
        ]

    def test_sample_keys_fully_split_drops_original(self, make_api):
        samples = run(make_api(sample_keys={"cpuSample": "^cpu"}), {"cpu": 1})
        assert [s.event_type for s in samples] == ["cpuSample"]

    def test_sample_keys_runs_before_rename_samples(self, make_api):
        api = make_api(sample_keys={"cpuSample": "^cpu"}, rename_samples={"^cpu": "procSample"}, skip_processing=["^cpu.id$"])
        names = compile_pipeline(api).stage_names()
        samples = run(api, {"cpu.id": 0, "cpu.load": 2})

        assert names.index("sample_keys") == names.index("rename_samples") - 1
        assert [(s.event_type, s.attributes) for s in samples] == [
            ("procSample", {"cpu.id": 0}),
            ("procSample", {"cpu.load": 2}),
        ]


class TestKeys:
    """Test key renaming stages."""

    def test_rename_keys(self, make_api):
        samples = run(make_api(rename_keys={"^used_": "u."}), {"used_memory": 1, "other": 2})
        assert samples[0].attributes == {"u.memory": 1, "other": 2}

    def test_replace_keys_then_rename_keys(self, make_api):
        api = make_api(replace_keys={"-": "_"}, rename_keys={"^a_": "A"})
        samples = run(api, {"a-b": 1})
        assert samples[0].attributes == {"Ab": 1}

    def test_skip_processing_exempts_keys(self, make_api):
        api = make_api(rename_keys={"_": "."}, skip_processing=["^keep_"])
        samples = run(api, {"keep_me": 1, "rename_me": 2})
        assert samples[0].attributes == {"keep_me": 1, "rename.me": 2}

    def test_snake_to_camel(self, make_api):
        samples = run(make_api(snake_to_camel=True), {"bytes_in_total": 1})
        assert samples[0].attributes == {"bytesInTotal": 1}

    def test_rename_samples_by_value(self, make_api):
        api = make_api(rename_samples={"type=^disk$": "diskSample", "^cpu": "cpuSample"})
        samples = run(api, {"type": "disk"}, {"cpu.user": 1}, {"other": 1})
        assert [s.event_type for s in samples] == ["diskSample", "cpuSample", "testSample"]


class TestValues:
    """Test value shaping stages."""

    def test_value_parser(self, make_api):
        """Test the capture replaces the value and a non-match drops the attribute."""
        api = make_api(value_parser={"^uptime": r"(\d+) days"})
        samples = run(api, {"uptime": "up 12 days", "uptime_human": "unknown", "x": "7 days"})
        assert samples[0].attributes == {"uptime": 12, "x": "7 days"}

    def test_value_transformer_substitution(self, make_api):
        api = make_api(value_transformer={"state": "^ok$=>1"})
        samples = run(api, {"state": "ok"})
        assert samples[0]["state"] == 1

    def test_value_transformer_template(self, make_api):
        api = make_api(value_transformer={"version": "v${value}"})
        samples = run(api, {"version": "2.1"})
        assert samples[0]["version"] == "v2.1"

    def test_to_lower_and_convert_space(self, make_api):
        api = make_api(to_lower=True, convert_space="_")
        samples = run(api, {"State": "Running Now", "n": 1})
        assert samples[0].attributes == {"State": "running_now", "n": 1}

    def test_perc_to_decimal(self, make_api):
        samples = run(make_api(perc_to_decimal=True), {"use": "45.5%", "name": "x%y"})
        assert samples[0].attributes == {"use": 45.5, "name": "x%y"}

    def test_pluck_numbers(self, make_api):
        samples = run(make_api(pluck_numbers=True), {"took": "took 12.5ms", "name": "none"})
        assert samples[0].attributes == {"took": 12.5, "name": "none"}

    def test_math(self, make_api):
        api = make_api(math={"used_pct": "${used} / ${total} * 100", "bad": "${used} / ${zero}"})
        samples = run(api, {"used": 25, "total": "50", "zero": 0})
        assert samples[0]["used_pct"] == 50.0
        assert "bad" not in samples[0]


class TestLabels:
    """Test custom attributes and prefix."""

    def test_custom_attributes_precedence(self, make_api):
        """Test API attributes override extra ones and never overwrite sample values."""
        api = make_api(custom_attributes={"env": "api", "team": "core"})
        samples = run(api, {"team": "sample"}, custom_attributes={"env": "config", "region": "eu"})
        assert samples[0].attributes == {"team": "sample", "env": "api", "region": "eu"}

    def test_prefix(self, make_api):
        samples = run(make_api(prefix="redis."), {"clients": 1})
        assert samples[0].attributes == {"redis.clients": 1}
