"""Configuration model for flex-agent.

Every YAML section maps onto a dataclass with zero-value defaults. The
``from_dict`` constructors never raise on malformed input: a field of the
wrong shape is logged and replaced with its default so a bad field only
degrades the API that declared it.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)


INTEGRATION_NAME = "com.newrelic.nri-flex"
INTEGRATION_NAME_SHORT = "nri-flex"

DEFAULT_EVENT_LIMIT = 500
DEFAULT_TIMEOUT_MS = 10000  # raw commands
DEFAULT_DIAL_TIMEOUT_MS = 1000
DEFAULT_SPLIT_BY = ":"
DEFAULT_SHELL = "/bin/sh"
DEFAULT_JMX_PATH = "./nrjmx/"
DEFAULT_JMX_HOST = "127.0.0.1"
DEFAULT_JMX_PORT = "9999"
DEFAULT_JMX_USER = "admin"
DEFAULT_JMX_PASS = "admin"
DEFAULT_METRIC_API_URL = "https://metric-api.newrelic.com/metric/v1"


# =============================================================================
# Coercion helpers
# =============================================================================

def _str(data: dict, key: str, default: str = "") -> str:
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        logger.warning(f"Config field '{key}' should be a string, ignoring")
        return default
    return str(value)


def _int(data: dict, key: str, default: int = 0) -> int:
    value = data.get(key, default)
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Config field '{key}' should be an integer, ignoring")
        return default


def _bool(data: dict, key: str, default: bool = False) -> bool:
    value = data.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "on")
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def _list(data: dict, key: str) -> list:
    value = data.get(key)
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, (str, int, float)):
        return [value]
    logger.warning(f"Config field '{key}' should be a list, ignoring")
    return []


def _str_list(data: dict, key: str) -> list[str]:
    return [str(v) for v in _list(data, key) if v is not None]


def _map(data: dict, key: str) -> dict:
    value = data.get(key)
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    logger.warning(f"Config field '{key}' should be a mapping, ignoring")
    return {}


def _str_map(data: dict, key: str) -> dict[str, str]:
    return {str(k): "" if v is None else str(v) for k, v in _map(data, key).items()}


def _section(data: dict, key: str) -> dict:
    """Nested section, always a dict."""
    return _map(data, key)


# =============================================================================
# Sections
# =============================================================================

@dataclass
class TLSConfig:
    """TLS options for HTTP sources."""

    enable: bool = False
    insecure_skip_verify: bool = False
    min_version: int = 0
    max_version: int = 0
    ca: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "TLSConfig":
        return cls(
            enable=_bool(data, "enable"),
            insecure_skip_verify=_bool(data, "insecure_skip_verify"),
            min_version=_int(data, "min_version"),
            max_version=_int(data, "max_version"),
            ca=_str(data, "ca"),
        )


@dataclass
class JMX:
    """JMX connection settings."""

    domain: str = ""
    user: str = ""
    password: str = ""
    host: str = ""
    port: str = ""
    key_store: str = ""
    key_store_pass: str = ""
    trust_store: str = ""
    trust_store_pass: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "JMX":
        return cls(
            domain=_str(data, "domain"),
            user=_str(data, "user"),
            password=_str(data, "pass"),
            host=_str(data, "host"),
            port=_str(data, "port"),
            key_store=_str(data, "key_store"),
            key_store_pass=_str(data, "key_store_pass"),
            trust_store=_str(data, "trust_store"),
            trust_store_pass=_str(data, "trust_store_pass"),
        )

    def merged_with(self, fallback: "JMX") -> "JMX":
        """Fill empty fields from ``fallback`` and then from the defaults."""
        return JMX(
            domain=self.domain or fallback.domain,
            user=self.user or fallback.user or DEFAULT_JMX_USER,
            password=self.password or fallback.password or DEFAULT_JMX_PASS,
            host=self.host or fallback.host or DEFAULT_JMX_HOST,
            port=self.port or fallback.port or DEFAULT_JMX_PORT,
            key_store=self.key_store or fallback.key_store,
            key_store_pass=self.key_store_pass or fallback.key_store_pass,
            trust_store=self.trust_store or fallback.trust_store,
            trust_store_pass=self.trust_store_pass or fallback.trust_store_pass,
        )


@dataclass
class Global:
    """Defaults shared by every API of a config."""

    base_url: str = ""
    user: str = ""
    password: str = ""
    proxy: str = ""
    timeout: int = 0  # milliseconds
    headers: dict[str, str] = field(default_factory=dict)
    jmx: JMX = field(default_factory=JMX)
    tls_config: TLSConfig = field(default_factory=TLSConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "Global":
        return cls(
            base_url=_str(data, "base_url"),
            user=_str(data, "user"),
            password=_str(data, "pass"),
            proxy=_str(data, "proxy"),
            timeout=_int(data, "timeout"),
            headers=_str_map(data, "headers"),
            jmx=JMX.from_dict(_section(data, "jmx")),
            tls_config=TLSConfig.from_dict(_section(data, "tls_config")),
        )


@dataclass
class SampleMerge:
    """Collapse several named samples into one event."""

    event_type: str = ""
    samples: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "SampleMerge":
        return cls(
            event_type=_str(data, "event_type"),
            samples=_str_list(data, "samples"),
        )


@dataclass
class RegMatch:
    """Regex applied to command output; groups become attributes."""

    expression: str = ""
    keys: list[str] = field(default_factory=list)
    keys_multi: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "RegMatch":
        return cls(
            expression=_str(data, "expression"),
            keys=_str_list(data, "keys"),
            keys_multi=_str_list(data, "keys_multi"),
        )


@dataclass
class Parse:
    """A sub_parse directive."""

    type: str = ""  # contains, match, prefix or regex
    key: str = ""
    split_by: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Parse":
        return cls(
            type=_str(data, "type"),
            key=_str(data, "key"),
            split_by=_str_list(data, "split_by"),
        )


@dataclass
class NamespaceConfig:
    """How a metric series namespace is resolved."""

    # neither set: the namespace defaults to the API name
    custom_attr: str = ""
    existing_attr: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "NamespaceConfig":
        return cls(
            custom_attr=_str(data, "custom_attr"),
            existing_attr=_str_list(data, "existing_attr"),
        )


@dataclass
class MetricParserConfig:
    """Rate/delta/gauge classification of attributes."""

    namespace: NamespaceConfig = field(default_factory=NamespaceConfig)
    metrics: dict[str, str] = field(default_factory=dict)  # bytesIn: RATE
    auto_set: bool = False
    counts: dict[str, int] = field(default_factory=dict)
    summaries: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "MetricParserConfig":
        counts = {}
        for key, value in _map(data, "counts").items():
            try:
                counts[str(key)] = int(value or 0)
            except (TypeError, ValueError):
                logger.warning(f"Metric parser count '{key}' has a non-integer interval, using 0")
                counts[str(key)] = 0
        summaries = {
            str(k): v if isinstance(v, dict) else {}
            for k, v in _map(data, "summaries").items()
        }
        return cls(
            namespace=NamespaceConfig.from_dict(_section(data, "namespace")),
            metrics={k: v.upper() for k, v in _str_map(data, "metrics").items()},
            auto_set=_bool(data, "auto_set"),
            counts=counts,
            summaries=summaries,
        )

    def is_enabled(self) -> bool:
        return bool(self.metrics or self.counts or self.summaries)


@dataclass
class Prometheus:
    """Prometheus exposition handling."""

    enable: bool = False
    unflatten: bool = False
    flattened_event: str = ""
    key_merge: list[str] = field(default_factory=list)
    keep_labels: bool = False
    keep_help: bool = False
    custom_attributes: dict[str, str] = field(default_factory=dict)
    sample_keys: dict[str, str] = field(default_factory=dict)
    histogram: bool = False
    histogram_event: str = ""
    summary: bool = False
    summary_event: str = ""
    go_metrics: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "Prometheus":
        return cls(
            enable=_bool(data, "enable"),
            unflatten=_bool(data, "unflatten"),
            flattened_event=_str(data, "flattened_event"),
            key_merge=_str_list(data, "key_merge"),
            keep_labels=_bool(data, "keep_labels"),
            keep_help=_bool(data, "keep_help"),
            custom_attributes=_str_map(data, "custom_attributes"),
            sample_keys=_str_map(data, "sample_keys"),
            histogram=_bool(data, "histogram"),
            histogram_event=_str(data, "histogram_event"),
            summary=_bool(data, "summary"),
            summary_event=_str(data, "summary_event") or _str(data, "summaryevent"),
            go_metrics=_bool(data, "go_metrics"),
        )


@dataclass
class Command:
    """One unit of work of a shell, database or jmx API."""

    name: str = ""
    event_type: str = ""
    shell: str = ""
    cache: str = ""
    run: str = ""
    jmx: JMX = field(default_factory=JMX)
    ignore_output: bool = False
    custom_attributes: dict[str, str] = field(default_factory=dict)
    output: str = ""  # jmx, raw, json
    line_start: int = 0
    line_end: int = 0
    timeout: int = 0  # milliseconds
    dial: str = ""
    network: str = ""

    # body parsing
    split: str = ""
    split_by: str = ""
    split_output: str = ""
    regex_match: bool = False
    group_by: str = ""
    row_header: int = 0
    row_start: int = 0

    # header parsing
    set_header: list[str] = field(default_factory=list)
    header_split_by: str = ""
    header_regex_match: bool = False

    regex_matches: list[RegMatch] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Command":
        return cls(
            name=_str(data, "name"),
            event_type=_str(data, "event_type"),
            shell=_str(data, "shell"),
            cache=_str(data, "cache"),
            run=_str(data, "run"),
            jmx=JMX.from_dict(_section(data, "jmx")),
            ignore_output=_bool(data, "ignore_output"),
            custom_attributes=_str_map(data, "custom_attributes"),
            output=_str(data, "output"),
            line_start=_int(data, "line_start"),
            line_end=_int(data, "line_end"),
            timeout=_int(data, "timeout"),
            dial=_str(data, "dial"),
            network=_str(data, "network"),
            split=_str(data, "split"),
            split_by=_str(data, "split_by"),
            split_output=_str(data, "split_output"),
            regex_match=_bool(data, "regex_match"),
            group_by=_str(data, "group_by"),
            row_header=_int(data, "row_header"),
            row_start=_int(data, "row_start"),
            set_header=_str_list(data, "set_header"),
            header_split_by=_str(data, "header_split_by"),
            header_regex_match=_bool(data, "header_regex_match"),
            regex_matches=[
                RegMatch.from_dict(m) for m in _list(data, "regex_matches") if isinstance(m, dict)
            ],
        )


@dataclass
class API:
    """A source definition: one fetch target plus its transform directives."""

    name: str = ""
    event_type: str = ""
    entity: str = ""
    entity_type: str = ""
    inventory: dict[str, str] = field(default_factory=dict)
    inventory_only: bool = False
    events: dict[str, str] = field(default_factory=dict)
    events_only: bool = False
    merge: str = ""
    prefix: str = ""

    # source selectors
    file: str = ""
    url: str = ""
    escape_url: bool = False
    prometheus: Prometheus = field(default_factory=Prometheus)
    cache: str = ""
    database: str = ""
    db_driver: str = ""
    db_conn: str = ""
    shell: str = ""
    commands_async: bool = False
    max_concurrency: int = 0
    commands: list[Command] = field(default_factory=list)
    db_queries: list[Command] = field(default_factory=list)
    jmx: JMX = field(default_factory=JMX)

    # http
    user: str = ""
    password: str = ""
    proxy: str = ""
    tls_config: TLSConfig = field(default_factory=TLSConfig)
    timeout: int = 0  # milliseconds
    method: str = ""
    payload: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    # structure
    disable_parent_attr: bool = False
    start_key: list[str] = field(default_factory=list)
    store_lookups: dict[str, str] = field(default_factory=dict)
    store_variables: dict[str, str] = field(default_factory=dict)
    strip_keys: list[str] = field(default_factory=list)
    lazy_flatten: list[str] = field(default_factory=list)
    sample_keys: dict[str, str] = field(default_factory=dict)
    split_objects: bool = False

    # keys and values
    replace_keys: dict[str, str] = field(default_factory=dict)
    rename_keys: dict[str, str] = field(default_factory=dict)
    rename_samples: dict[str, str] = field(default_factory=dict)
    remove_keys: list[str] = field(default_factory=list)
    keep_keys: list[str] = field(default_factory=list)
    skip_processing: list[str] = field(default_factory=list)
    to_lower: bool = False
    convert_space: str = ""
    snake_to_camel: bool = False
    perc_to_decimal: bool = False
    pluck_numbers: bool = False
    math: dict[str, str] = field(default_factory=dict)
    sub_parse: list[Parse] = field(default_factory=list)
    custom_attributes: dict[str, str] = field(default_factory=dict)
    value_parser: dict[str, str] = field(default_factory=dict)
    value_transformer: dict[str, str] = field(default_factory=dict)
    metric_parser: MetricParserConfig = field(default_factory=MetricParserConfig)
    sample_filter: list[dict[str, str]] = field(default_factory=list)

    # raw output splitting
    split: str = ""
    split_by: str = ""
    set_header: list[str] = field(default_factory=list)
    regex: bool = False
    row_header: int = 0
    row_start: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "API":
        sample_filter = []
        for item in _list(data, "sample_filter"):
            if isinstance(item, dict):
                sample_filter.append({str(k): str(v) for k, v in item.items()})
        return cls(
            name=_str(data, "name"),
            event_type=_str(data, "event_type"),
            entity=_str(data, "entity"),
            entity_type=_str(data, "entity_type"),
            inventory=_str_map(data, "inventory"),
            inventory_only=_bool(data, "inventory_only"),
            events=_str_map(data, "events"),
            events_only=_bool(data, "events_only"),
            merge=_str(data, "merge"),
            prefix=_str(data, "prefix"),
            file=_str(data, "file"),
            url=_str(data, "url"),
            escape_url=_bool(data, "escape_url"),
            prometheus=Prometheus.from_dict(_section(data, "prometheus")),
            cache=_str(data, "cache"),
            database=_str(data, "database"),
            db_driver=_str(data, "db_driver"),
            db_conn=_str(data, "db_conn"),
            shell=_str(data, "shell"),
            commands_async=_bool(data, "commands_async"),
            max_concurrency=_int(data, "max_concurrency"),
            commands=[Command.from_dict(c) for c in _list(data, "commands") if isinstance(c, dict)],
            db_queries=[Command.from_dict(c) for c in _list(data, "db_queries") if isinstance(c, dict)],
            jmx=JMX.from_dict(_section(data, "jmx")),
            user=_str(data, "user"),
            password=_str(data, "pass"),
            proxy=_str(data, "proxy"),
            tls_config=TLSConfig.from_dict(_section(data, "tls_config")),
            timeout=_int(data, "timeout"),
            method=_str(data, "method"),
            payload=_str(data, "payload"),
            headers=_str_map(data, "headers"),
            disable_parent_attr=_bool(data, "disable_parent_attr"),
            start_key=_str_list(data, "start_key"),
            store_lookups=_str_map(data, "store_lookups"),
            store_variables=_str_map(data, "store_variables"),
            strip_keys=_str_list(data, "strip_keys"),
            lazy_flatten=_str_list(data, "lazy_flatten"),
            sample_keys=_str_map(data, "sample_keys"),
            split_objects=_bool(data, "split_objects"),
            replace_keys=_str_map(data, "replace_keys"),
            rename_keys=_str_map(data, "rename_keys"),
            rename_samples=_str_map(data, "rename_samples"),
            remove_keys=_str_list(data, "remove_keys"),
            keep_keys=_str_list(data, "keep_keys"),
            skip_processing=_str_list(data, "skip_processing"),
            to_lower=_bool(data, "to_lower"),
            convert_space=_str(data, "convert_space"),
            snake_to_camel=_bool(data, "snake_to_camel"),
            perc_to_decimal=_bool(data, "perc_to_decimal"),
            pluck_numbers=_bool(data, "pluck_numbers"),
            math=_str_map(data, "math"),
            sub_parse=[Parse.from_dict(p) for p in _list(data, "sub_parse") if isinstance(p, dict)],
            custom_attributes=_str_map(data, "custom_attributes"),
            value_parser=_str_map(data, "value_parser"),
            value_transformer=_str_map(data, "value_transformer"),
            metric_parser=MetricParserConfig.from_dict(_section(data, "metric_parser")),
            sample_filter=sample_filter,
            split=_str(data, "split"),
            split_by=_str(data, "split_by"),
            set_header=_str_list(data, "set_header"),
            regex=_bool(data, "regex"),
            row_header=_int(data, "row_header"),
            row_start=_int(data, "row_start"),
        )

    def default_event_type(self) -> str:
        """Event type used when none is configured."""
        if self.event_type:
            return self.event_type
        if self.name:
            return f"{self.name}Sample"
        return "FlexSample"


@dataclass
class Config:
    """Root of one YAML document."""

    name: str = ""
    file_name: str = ""  # set when the file is read
    global_: Global = field(default_factory=Global)
    apis: list[API] = field(default_factory=list)
    datastore: dict[str, list[Any]] = field(default_factory=dict)
    lookup_store: dict[str, list[str]] = field(default_factory=dict)
    lookup_file: str = ""
    variable_store: dict[str, str] = field(default_factory=dict)
    custom_attributes: dict[str, str] = field(default_factory=dict)
    metric_api: bool = False
    sample_merge: list[SampleMerge] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any, file_name: str = "") -> "Config":
        """Create config from a parsed YAML document."""
        if not isinstance(data, dict):
            logger.warning(f"Config {file_name or '<inline>'} is not a mapping, using empty config")
            data = {}

        lookup_store = {
            str(k): [str(x) for x in v] if isinstance(v, list) else [str(v)]
            for k, v in _map(data, "lookup_store").items()
        }
        datastore = {
            str(k): v if isinstance(v, list) else [v]
            for k, v in _map(data, "datastore").items()
        }
        return cls(
            name=_str(data, "name"),
            file_name=file_name,
            global_=Global.from_dict(_section(data, "global")),
            apis=[API.from_dict(a) for a in _list(data, "apis") if isinstance(a, dict)],
            datastore=datastore,
            lookup_store=lookup_store,
            lookup_file=_str(data, "lookup_file"),
            variable_store=_str_map(data, "variable_store"),
            custom_attributes=_str_map(data, "custom_attributes"),
            metric_api=_bool(data, "metric_api"),
            sample_merge=[
                SampleMerge.from_dict(m) for m in _list(data, "sample_merge") if isinstance(m, dict)
            ],
        )


@dataclass
class AgentSettings:
    """Process-level settings, normally filled from CLI flags."""

    config_file: str = ""
    config_dir: str = "flexConfigs/"
    event_limit: int = DEFAULT_EVENT_LIMIT
    force_log_event: bool = False
    entity: str = ""
    local: bool = True
    insights_url: str = ""
    insights_api_key: str = ""
    insights_output: bool = False
    metric_api_url: str = DEFAULT_METRIC_API_URL
    metric_api_key: str = ""
    interval: int = 60  # seconds between harvest cycles
    max_concurrency: int = 10
    integration_version: str = "Unknown-SNAPSHOT"

    @classmethod
    def from_env(cls) -> "AgentSettings":
        """Create settings from FLEX_* environment variables."""
        settings = cls()
        settings.config_file = os.environ.get("FLEX_CONFIG_FILE", settings.config_file)
        settings.config_dir = os.environ.get("FLEX_CONFIG_DIR", settings.config_dir)
        settings.insights_url = os.environ.get("FLEX_INSIGHTS_URL", settings.insights_url)
        settings.insights_api_key = os.environ.get("FLEX_INSIGHTS_API_KEY", settings.insights_api_key)
        settings.metric_api_url = os.environ.get("FLEX_METRIC_API_URL", settings.metric_api_url)
        settings.metric_api_key = os.environ.get("FLEX_METRIC_API_KEY", settings.metric_api_key)

        env = {k[len("FLEX_"):].lower(): v for k, v in os.environ.items() if k.startswith("FLEX_")}
        settings.event_limit = _int(env, "event_limit", settings.event_limit)
        settings.interval = _int(env, "interval", settings.interval)
        settings.max_concurrency = _int(env, "max_concurrency", settings.max_concurrency)
        settings.insights_output = _bool(env, "insights_output", settings.insights_output)
        settings.force_log_event = _bool(env, "force_log_event", settings.force_log_event)
        return settings


def timeout_seconds(*candidates_ms: int, default_ms: int = DEFAULT_TIMEOUT_MS) -> float:
    """First positive millisecond timeout, as seconds."""
    for value in candidates_ms:
        if value and value > 0:
            return value / 1000.0
    return default_ms / 1000.0


def merged_headers(global_: Global, api: API) -> dict[str, str]:
    headers = dict(global_.headers)
    headers.update(api.headers)
    return headers


def resolve_jmx(api: API, command: Optional[Command], global_: Global) -> JMX:
    """Resolve jmx settings: command, then api, then global, then defaults."""
    base = api.jmx.merged_with(global_.jmx)
    if command is None:
        return base
    return command.jmx.merged_with(base)
