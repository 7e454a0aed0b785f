"""
Field satisfaction rules shared by extraction and the pending action store.

A required field counts as satisfied when any of these hold:

    direct key present          items=[...], customer="John"
    alternative group complete  first_name + last_name for name
    numbered flat item fields   item_1_name, item_1_price
    flat item fields            name, price (for an items array)
    prefixed relationship keys  customer_name, customer_email
"""

import copy
import re
from typing import Dict, Any, List, Optional, Tuple

from actionflow.domain.models.action_state import ActionDefinition, FieldSchema

_NUMBERED_FIELD = re.compile(r"^([a-z]+)_(\d+)_(\w+)$")


def has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, dict)):
        return len(value) > 0
    return True


def is_satisfied(field: FieldSchema, params: Dict[str, Any]) -> bool:
    """Whether params carry enough data for a field"""

    value = params.get(field.name)
    if has_value(value):
        if field.is_array and isinstance(value, list):
            return any(
                _item_complete(item, field.item_schema) or _alternatives_present(field, item)
                for item in value
            )
        return True

    if field.alternative_fields and all(has_value(params.get(alt)) for alt in field.alternative_fields):
        return True

    if field.is_array:
        return _numbered_items_complete(field, params) or _flat_item_complete(field, params)

    if field.is_relationship:
        return _prefixed_relationship_present(field, params)

    return False


def compute_missing_fields(definition: ActionDefinition, params: Dict[str, Any]) -> List[str]:
    """Required fields not satisfied by params, in schema order"""

    return [
        field.name for field in definition.fields
        if field.required and not is_satisfied(field, params)
    ]


def _item_complete(item: Any, item_schema: List[FieldSchema]) -> bool:
    if not isinstance(item, dict):
        return has_value(item)
    if not item_schema:
        return any(has_value(v) for v in item.values())

    required = [sub.name for sub in item_schema if sub.required]
    if required:
        return all(has_value(item.get(name)) for name in required)
    return any(has_value(item.get(sub.name)) for sub in item_schema)


def _alternatives_present(field: FieldSchema, item: Any) -> bool:
    if not field.alternative_fields or not isinstance(item, dict):
        return False
    return all(has_value(item.get(alt)) for alt in field.alternative_fields)


def item_prefixes(field: FieldSchema) -> List[str]:
    """Accepted prefixes for numbered flat fields of an array"""

    prefixes = ["item"]
    singular = field.name[:-1] if field.name.endswith("s") else field.name
    for prefix in (singular, field.name):
        if prefix not in prefixes:
            prefixes.append(prefix)
    return prefixes


def numbered_items(field: FieldSchema, params: Dict[str, Any]) -> Dict[int, Dict[str, Any]]:
    """Collect item_N_sub style keys into items indexed by N"""

    prefixes = item_prefixes(field)
    items: Dict[int, Dict[str, Any]] = {}
    for key, value in params.items():
        match = _NUMBERED_FIELD.match(key)
        if not match or match.group(1) not in prefixes or int(match.group(2)) < 1:
            continue
        items.setdefault(int(match.group(2)), {})[match.group(3)] = value
    return items


def _numbered_items_complete(field: FieldSchema, params: Dict[str, Any]) -> bool:
    return any(_item_complete(item, field.item_schema) for item in numbered_items(field, params).values())


def _flat_item_complete(field: FieldSchema, params: Dict[str, Any]) -> bool:
    if not field.item_schema:
        return False
    flat = {sub.name: params.get(sub.name) for sub in field.item_schema if sub.name in params}
    return bool(flat) and _item_complete(flat, field.item_schema)


def relationship_base(field: FieldSchema) -> str:
    return field.name[:-3] if field.name.endswith("_id") else field.name


def _prefixed_relationship_present(field: FieldSchema, params: Dict[str, Any]) -> bool:
    base = relationship_base(field)
    if base != field.name and has_value(params.get(base)):
        return True

    sub_fields = [sub.name for sub in field.item_schema if sub.required]
    if not sub_fields:
        sub_fields = [sub.name for sub in field.item_schema]
    search_field = field.relationship.search_field if field.relationship else "name"
    if search_field not in sub_fields:
        sub_fields.append(search_field)

    return any(has_value(params.get(f"{base}_{sub}")) for sub in sub_fields)


def deep_merge(base: Dict[str, Any], partial: Dict[str, Any]) -> Dict[str, Any]:
    """Merge partial into a copy of base

    Empty values in partial never erase existing data. Nested dicts merge by
    key and lists of dicts merge element-wise.
    """

    merged = copy.deepcopy(base)
    for key, value in partial.items():
        if not has_value(value):
            continue
        existing = merged.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            merged[key] = deep_merge(existing, value)
        elif isinstance(existing, list) and isinstance(value, list):
            merged[key] = _merge_lists(existing, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _merge_lists(existing: List[Any], incoming: List[Any]) -> List[Any]:
    if not all(isinstance(item, dict) for item in existing + incoming):
        return copy.deepcopy(incoming)

    merged = []
    for index in range(max(len(existing), len(incoming))):
        if index >= len(incoming):
            merged.append(copy.deepcopy(existing[index]))
        elif index >= len(existing):
            merged.append(copy.deepcopy(incoming[index]))
        else:
            merged.append(deep_merge(existing[index], incoming[index]))
    return merged


def smart_merge(definition: ActionDefinition, params: Dict[str, Any]) -> Dict[str, Any]:
    """Fold flat item data into the array fields that own it"""

    result = copy.deepcopy(params)
    top_level = {field.name for field in definition.fields}
    claimed = {alt for field in definition.fields if not field.is_array for alt in field.alternative_fields}

    for field in definition.fields:
        if not field.is_array:
            continue

        items = result.get(field.name)
        if not isinstance(items, list):
            items = []

        for index, numbered in sorted(numbered_items(field, result).items()):
            while len(items) < index:
                items.append({})
            current = items[index - 1] if isinstance(items[index - 1], dict) else {}
            items[index - 1] = deep_merge(current, numbered)
            for sub in numbered:
                result.pop(_numbered_key(field, result, index, sub), None)

        folded = {}
        foldable = [sub.name for sub in field.item_schema] + list(field.alternative_fields)
        for name in foldable:
            if name in top_level or name in claimed or not has_value(result.get(name)):
                continue
            folded[name] = result.pop(name)

        if folded:
            if not items:
                items.append({})
            if isinstance(items[0], dict):
                items[0] = deep_merge(folded, items[0])

        items = [item for item in items if has_value(item)]
        if items:
            result[field.name] = items

    return result


def _numbered_key(field: FieldSchema, params: Dict[str, Any], index: int, sub: str) -> Optional[str]:
    for prefix in item_prefixes(field):
        key = f"{prefix}_{index}_{sub}"
        if key in params:
            return key
    return None


def calculate_confidence(definition: ActionDefinition, extracted: Dict[str, Any]) -> float:
    """Score how completely extracted data covers an action's fields"""

    present = {key for key, value in extracted.items() if has_value(value) and not key.startswith("_")}
    if not definition.fields:
        return 0.5 if present else 0.1
    if not present:
        return 0.0

    required, optional = _split_fields(definition)
    required_share = (
        sum(1 for f in required if is_satisfied(f, extracted)) / len(required) if required else 1.0
    )
    if not optional:
        return round(required_share, 2)

    optional_share = sum(1 for f in optional if is_satisfied(f, extracted)) / len(optional)
    return round(0.7 * required_share + 0.3 * optional_share, 2)


def _split_fields(definition: ActionDefinition) -> Tuple[List[FieldSchema], List[FieldSchema]]:
    required = [f for f in definition.fields if f.required]
    optional = [f for f in definition.fields if not f.required]
    return required, optional
