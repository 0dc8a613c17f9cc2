"""Schema-driven evaluation of a step's dynamic form."""

from .choices import ChoiceResolution, OptionStatus, decide_choice
from .countdown import (
    CountdownDisplay,
    CountdownField,
    FreezeUpdate,
    SiblingStep,
    StopCountdownRef,
    cascade_freeze_updates,
    collect_countdown_fields,
    describe_countdown,
    format_countdown,
    map_stop_countdown_paths,
    parse_stop_countdown_path,
    recompute_freeze_map,
    remaining_days,
)
from .form_data import (
    StepFieldUpload,
    UploadedFile,
    extract_step_field_removals,
    extract_step_field_updates,
    extract_step_field_uploads,
)
from .global_links import collect_linked_date_values, sync_global_values
from .goods import GoodsAllocation, collect_shipment_goods_allocations
from .merge import (
    StepFieldUpdate,
    apply_step_field_removals,
    apply_step_field_updates,
    collect_removed_indices,
    compact_repeatable_groups,
    gapped_list_paths,
    merge_step_values,
)
from .paths import (
    decode_field_path,
    describe_field_path,
    encode_field_path,
    field_input_name,
    field_removal_name,
    is_file_field_required,
    parse_step_field_doc_type,
    step_field_doc_type,
)
from .requirements import (
    RequirementContext,
    collect_boolean_field_options,
    collect_choice_resolutions,
    collect_flat_field_values,
    collect_missing_field_paths,
    collect_step_file_doc_types,
    has_any_field_value,
    has_missing_under_path,
)
from .schema import (
    FREEZE_KEY,
    StepFieldSchema,
    parse_step_field_schema,
    resolve_step_schema,
    schema_from_legacy_fields,
)
from .values import StepValues, get_value_at_path, is_truthy

__all__ = [
    "ChoiceResolution",
    "OptionStatus",
    "decide_choice",
    "CountdownDisplay",
    "CountdownField",
    "FreezeUpdate",
    "SiblingStep",
    "StopCountdownRef",
    "cascade_freeze_updates",
    "collect_countdown_fields",
    "describe_countdown",
    "format_countdown",
    "map_stop_countdown_paths",
    "parse_stop_countdown_path",
    "recompute_freeze_map",
    "remaining_days",
    "StepFieldUpload",
    "UploadedFile",
    "extract_step_field_removals",
    "extract_step_field_updates",
    "extract_step_field_uploads",
    "collect_linked_date_values",
    "sync_global_values",
    "GoodsAllocation",
    "collect_shipment_goods_allocations",
    "StepFieldUpdate",
    "apply_step_field_removals",
    "apply_step_field_updates",
    "collect_removed_indices",
    "compact_repeatable_groups",
    "gapped_list_paths",
    "merge_step_values",
    "decode_field_path",
    "describe_field_path",
    "encode_field_path",
    "field_input_name",
    "field_removal_name",
    "is_file_field_required",
    "parse_step_field_doc_type",
    "step_field_doc_type",
    "RequirementContext",
    "collect_boolean_field_options",
    "collect_choice_resolutions",
    "collect_flat_field_values",
    "collect_missing_field_paths",
    "collect_step_file_doc_types",
    "has_any_field_value",
    "has_missing_under_path",
    "FREEZE_KEY",
    "StepFieldSchema",
    "parse_step_field_schema",
    "resolve_step_schema",
    "schema_from_legacy_fields",
    "StepValues",
    "get_value_at_path",
    "is_truthy",
]
