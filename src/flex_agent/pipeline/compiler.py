"""Compile an API's transform directives into a Pipeline."""

import logging
from typing import Optional

from ..config import API
from .base import Exemptions, Pipeline, Stage, compile_regex
from .keys import (
    KeepKeysStage,
    RemoveKeysStage,
    RenameKeysStage,
    RenameSamplesStage,
    SnakeToCamelStage,
)
from .labels import CustomAttributesStage, PrefixStage, SampleFilterStage
from .structure import FlattenStage, SampleKeysStage, StripKeysStage, SubParseStage
from .values import (
    ConvertSpaceStage,
    MathStage,
    PercToDecimalStage,
    PluckNumbersStage,
    ToLowerStage,
    ValueParserStage,
    ValueTransformerStage,
)

logger = logging.getLogger(__name__)


def compile_pipeline(
    api: API,
    custom_attributes: Optional[dict[str, str]] = None,
) -> Pipeline:
    """
    Build the stage list for ``api`` in the fixed stage order.

    Stages whose directive is not configured are left out. Every regex
    and math expression is compiled here, once; an invalid one raises
    ConfigError for this API only.

    Args:
        api: Source definition
        custom_attributes: Extra static attributes (config or command
            level); the API's own custom attributes take precedence

    Returns:
        Pipeline ready to run on normalized samples
    """
    source = api.name
    exempt = Exemptions(compile_regex(p, "skip_processing", source) for p in api.skip_processing)
    stages: list[Stage] = []

    if api.strip_keys:
        stages.append(StripKeysStage(api.strip_keys, exempt))
    stages.append(FlattenStage(api.lazy_flatten, api.disable_parent_attr, exempt))
    if api.sub_parse:
        stages.append(SubParseStage(api.sub_parse, source, exempt))
    if api.sample_keys:
        stages.append(SampleKeysStage(api.sample_keys, source, exempt))
    if api.rename_samples:
        stages.append(RenameSamplesStage(api.rename_samples, source, exempt))

    if api.keep_keys:
        stages.append(KeepKeysStage(api.keep_keys, source, exempt))
    if api.remove_keys:
        stages.append(RemoveKeysStage(api.remove_keys, source, exempt))

    rename_rules = dict(api.replace_keys)
    rename_rules.update(api.rename_keys)
    if rename_rules:
        stages.append(RenameKeysStage(rename_rules, source, exempt))

    if api.value_parser:
        stages.append(ValueParserStage(api.value_parser, source, exempt))
    if api.value_transformer:
        stages.append(ValueTransformerStage(api.value_transformer, source, exempt))
    if api.to_lower:
        stages.append(ToLowerStage(exempt))
    if api.convert_space:
        stages.append(ConvertSpaceStage(api.convert_space, exempt))
    if api.snake_to_camel:
        stages.append(SnakeToCamelStage(exempt))
    if api.perc_to_decimal:
        stages.append(PercToDecimalStage(exempt))
    if api.pluck_numbers:
        stages.append(PluckNumbersStage(exempt))
    if api.math:
        stages.append(MathStage(api.math, source, exempt))

    if api.sample_filter:
        stages.append(SampleFilterStage(api.sample_filter, source, exempt))

    attributes = dict(custom_attributes or {})
    attributes.update(api.custom_attributes)
    if attributes:
        stages.append(CustomAttributesStage(attributes, exempt))
    if api.prefix:
        stages.append(PrefixStage(api.prefix, exempt))

    pipeline = Pipeline(stages, source=source)
    logger.debug(f"Compiled pipeline for {source}: {', '.join(pipeline.stage_names())}")
    return pipeline
